"""Shared gateway and collaborator doubles for orchestrator tests."""

import asyncio

import pytest

from chargeflow.common.errors import AuthorizationError
from chargeflow.services.gateway.models import (
    AttachResult,
    AuthorizationIntent,
    AuthorizationStatus,
    Billing,
    CardDetails,
    ChallengeDescriptor,
    InstrumentKind,
    InstrumentSelection,
    IntentStatus,
    PaymentInstrument,
)
from chargeflow.services.orchestrator.challenge import RecordingSurface, SentinelMessageChannel
from chargeflow.services.orchestrator.outcome import OutcomeHandler, RecordingNavigator
from chargeflow.services.orchestrator.schemas import AuthorizationRequest
from chargeflow.services.orchestrator.service import AuthorizationOrchestrator

SENTINEL = "3DS-authentication-complete"


class FakeGateway:
    """In-memory gateway; `statuses` is replayed by `check_status`, last item repeating."""

    def __init__(
        self,
        attach_status=AuthorizationStatus.SUCCEEDED,
        challenge_url=None,
        failure_reason=None,
        statuses=(),
        instrument_errors=(),
        intent_error=None,
        attach_error=None,
        attach_intent_id=None,
        status_intent_id=None,
    ) -> None:
        self.attach_status = attach_status
        self.challenge_url = challenge_url
        self.failure_reason = failure_reason
        self.statuses = list(statuses)
        self.instrument_errors = list(instrument_errors)
        self.intent_error = intent_error
        self.attach_error = attach_error
        self.attach_intent_id = attach_intent_id
        self.status_intent_id = status_intent_id
        self.calls: list[str] = []
        self.attach_gate: asyncio.Event | None = None
        self.attach_started: asyncio.Event | None = None

    def count(self, operation: str) -> int:
        return self.calls.count(operation)

    async def create_intent(self, amount, currency, reference, *, description=None, metadata=None):
        self.calls.append("create_intent")
        if self.intent_error is not None:
            raise self.intent_error
        number = self.count("create_intent")
        return AuthorizationIntent(
            id=f"pi_{number}",
            client_secret=f"pi_{number}_secret",
            amount=amount,
            currency=currency,
            status=AuthorizationStatus.AWAITING_INSTRUMENT,
        )

    async def create_instrument(self, kind, details, billing):
        self.calls.append("create_instrument")
        if self.instrument_errors:
            raise self.instrument_errors.pop(0)
        return PaymentInstrument(id=f"pm_{self.count('create_instrument')}", kind=kind, billing=billing)

    async def attach_instrument(self, intent_id, client_secret, instrument_id):
        self.calls.append("attach_instrument")
        if self.attach_started is not None:
            self.attach_started.set()
        if self.attach_gate is not None:
            await self.attach_gate.wait()
        if self.attach_error is not None:
            raise self.attach_error
        return AttachResult(
            intent_id=self.attach_intent_id or intent_id,
            status=self.attach_status,
            challenge=ChallengeDescriptor(url=self.challenge_url) if self.challenge_url else None,
            failure_reason=self.failure_reason,
        )

    async def check_status(self, intent_id, client_secret):
        self.calls.append("check_status")
        item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(item, AuthorizationError):
            raise item
        return IntentStatus(intent_id=self.status_intent_id or intent_id, status=item, failure_reason=self.failure_reason)


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent = []

    def notify(self, reference, outcome) -> None:
        self.sent.append((reference, outcome))


class RecordingReconciliation:
    def __init__(self) -> None:
        self.enqueued = []

    def enqueue(self, reference, intent_id, error):
        self.enqueued.append((reference, intent_id, error))
        return "rec-1"


class FakeBookingStore:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[str] = []

    async def mark_deposit_paid(self, reference: str) -> None:
        self.calls.append(reference)
        if self.error is not None:
            raise self.error


class Callbacks:
    def __init__(self) -> None:
        self.successes = []
        self.errors = []

    def on_success(self, outcome) -> None:
        self.successes.append(outcome)

    def on_error(self, error) -> None:
        self.errors.append(error)


class Harness:
    def __init__(self, gateway, **kwargs) -> None:
        self.gateway = gateway
        self.navigator = RecordingNavigator()
        self.notifier = RecordingNotifier()
        self.reconciliation = RecordingReconciliation()
        self.surface = RecordingSurface()
        self.callbacks = Callbacks()
        self.handler = OutcomeHandler(
            self.navigator,
            notifier=self.notifier,
            reconciliation=self.reconciliation,
            redirect_delay_seconds=kwargs.pop("redirect_delay_seconds", 0.0),
        )
        kwargs.setdefault("poll_interval_seconds", 0.01)
        kwargs.setdefault("poll_initial_delay_seconds", 0.01)
        kwargs.setdefault("poll_budget_seconds", 2.0)
        kwargs.setdefault("channel_factory", lambda: SentinelMessageChannel(SENTINEL))
        self.orchestrator = AuthorizationOrchestrator(gateway, self.handler, surface=self.surface, **kwargs)

    async def authorize(self, reference="R1", amount=1000, kind=InstrumentKind.CARD):
        return await self.orchestrator.authorize(
            make_request(reference, amount, kind),
            on_success=self.callbacks.on_success,
            on_error=self.callbacks.on_error,
        )


def card_selection(card_number="4343434343434345") -> InstrumentSelection:
    return InstrumentSelection(
        kind=InstrumentKind.CARD,
        card=CardDetails(card_number=card_number, exp_month=12, exp_year=2030, cvc="123"),
    )


def make_billing() -> Billing:
    return Billing(name="Juan Dela Cruz", email="juan@example.com", phone="09171234567")


def make_request(reference="R1", amount=1000, kind=InstrumentKind.CARD) -> AuthorizationRequest:
    selection = card_selection() if kind is InstrumentKind.CARD else InstrumentSelection(kind=kind)
    return AuthorizationRequest(
        reference=reference, amount=amount, currency="PHP", selection=selection, billing=make_billing()
    )


@pytest.fixture
def gateway_factory():
    return FakeGateway


@pytest.fixture
def harness_factory():
    return Harness


@pytest.fixture
def booking_store_factory():
    return FakeBookingStore


@pytest.fixture
def card():
    return card_selection


@pytest.fixture
def billing():
    return make_billing()


@pytest.fixture
def request_factory():
    return make_request


@pytest.fixture
def sentinel():
    return SENTINEL


@pytest.fixture
def recording_notifier():
    return RecordingNotifier()


@pytest.fixture
def recording_reconciliation():
    return RecordingReconciliation()
