"""Request/response schemas for authorization callers and the HTTP surface."""

from enum import Enum

from pydantic import BaseModel, Field

from chargeflow.common.config import settings
from chargeflow.services.gateway.models import Billing, ChallengeDescriptor, InstrumentSelection


class ChargeVariant(str, Enum):
    FULL = "full"
    DEPOSIT = "deposit"


class AuthorizationRequest(BaseModel):
    """Everything `authorize()` needs; `amount` is in minor units."""

    reference: str = Field(min_length=1)
    amount: int = Field(gt=0)
    currency: str = Field(default_factory=lambda: settings.default_currency, min_length=3, max_length=3)
    selection: InstrumentSelection
    billing: Billing
    description: str | None = None
    metadata: dict = Field(default_factory=dict)


class AuthorizationCreateRequest(AuthorizationRequest):
    variant: ChargeVariant = ChargeVariant.FULL


class InstrumentSubmission(BaseModel):
    selection: InstrumentSelection
    billing: Billing


class ChallengeMessage(BaseModel):
    payload: str


class AuthorizationOutcome(BaseModel):
    """Caller-visible terminal result of one attempt."""

    reference: str
    attempt_id: str
    succeeded: bool
    intent_id: str | None = None
    amount: int | None = None
    currency: str | None = None
    reason: str | None = None
    message: str | None = None
    bookkeeping_pending: bool = False


class AuthorizationView(BaseModel):
    reference: str
    attempt_id: str
    state: str
    intent_id: str | None = None
    challenge: ChallengeDescriptor | None = None
    last_error: dict | None = None
    outcome: AuthorizationOutcome | None = None
    redirect_to: str | None = None
