"""Gateway-facing value types.

`AuthorizationStatus` values are the gateway's own wire strings; the
orchestrator relays them and never infers a status locally.
"""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class AuthorizationStatus(str, Enum):
    AWAITING_INSTRUMENT = "awaiting_payment_method"
    AWAITING_CHALLENGE = "awaiting_next_action"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AuthorizationStatus.SUCCEEDED, AuthorizationStatus.FAILED)

    @property
    def ends_attempt(self) -> bool:
        # After an attach, `awaiting_payment_method` means the instrument was bounced.
        return self.is_terminal or self is AuthorizationStatus.AWAITING_INSTRUMENT


class InstrumentKind(str, Enum):
    CARD = "card"
    GCASH = "gcash"
    GRAB_PAY = "grab_pay"
    PAYMAYA = "paymaya"


class Billing(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    phone: str | None = None


class CardDetails(BaseModel):
    card_number: str = Field(min_length=12, max_length=19)
    exp_month: int = Field(ge=1, le=12)
    exp_year: int = Field(ge=2000)
    cvc: str = Field(min_length=3, max_length=4)


class InstrumentSelection(BaseModel):
    """Funding source picked by the payer; card details only for `card`."""

    kind: InstrumentKind
    card: CardDetails | None = None


class ChallengeDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["redirect"] = "redirect"
    url: str


class IntentStatus(BaseModel):
    """Status view of one intent as returned by attach/status calls."""

    model_config = ConfigDict(frozen=True)

    intent_id: str
    status: AuthorizationStatus
    challenge: ChallengeDescriptor | None = None
    failure_reason: str | None = None


class AttachResult(IntentStatus):
    pass


class AuthorizationIntent(BaseModel):
    """Gateway record for one charge attempt.

    Frozen: status changes produce a new object via `apply`, and only for a
    view belonging to the same intent id.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    client_secret: str
    amount: int
    currency: str
    status: AuthorizationStatus
    failure_reason: str | None = None

    def apply(self, view: IntentStatus) -> "AuthorizationIntent":
        if view.intent_id != self.id:
            raise ValueError(f"status for intent {view.intent_id} cannot update intent {self.id}")
        return self.model_copy(update={"status": view.status, "failure_reason": view.failure_reason})


class PaymentInstrument(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    kind: InstrumentKind
    billing: Billing
