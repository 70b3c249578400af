"""State machine for one authorization attempt.

Every gateway response is applied only while the attempt is still current
(not cancelled, not terminal). Anything arriving later is dropped, so a
terminal state can never be overwritten.
"""

import asyncio
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from uuid import uuid4

from chargeflow.common.errors import (
    AttemptInProgress,
    AuthorizationError,
    ChallengeAbandoned,
    Declined,
    GatewayUnavailable,
)
from chargeflow.common.logging import bind_attempt, logger
from chargeflow.common.metrics import stale_responses_discarded_total
from chargeflow.common.state_machine import AttemptState, is_terminal, validate_transition
from chargeflow.services.gateway.models import (
    AuthorizationIntent,
    AuthorizationStatus,
    Billing,
    ChallengeDescriptor,
    InstrumentSelection,
    IntentStatus,
    PaymentInstrument,
)
from chargeflow.services.orchestrator.challenge import (
    AuthenticationBridge,
    ChallengeChannel,
    ChallengeSurface,
)
from chargeflow.services.orchestrator.outcome import OutcomeHandler, PostSuccessHook, invoke_callback
from chargeflow.services.orchestrator.poller import StatusPoller
from chargeflow.services.orchestrator.schemas import AuthorizationOutcome

DECLINED_MESSAGE = "Payment was not successful. Please try again."


@dataclass
class AttemptContext:
    """Orchestrator-owned state of one in-flight attempt."""

    reference: str
    amount: int
    currency: str
    attempt_id: str = field(default_factory=lambda: str(uuid4()))
    state: AttemptState = AttemptState.IDLE
    intent: AuthorizationIntent | None = None
    instrument: PaymentInstrument | None = None
    poller: StatusPoller | None = None
    bridge: AuthenticationBridge | None = None
    challenge: ChallengeDescriptor | None = None
    started_at: float = field(default_factory=time.monotonic)
    last_error: AuthorizationError | None = None
    outcome: AuthorizationOutcome | None = None
    redirect_to: str | None = None
    finished_at: float | None = None
    cancelled: bool = False
    in_flight: bool = False
    on_success: Callable | None = None
    on_error: Callable | None = None
    done: asyncio.Future | None = None

    @property
    def terminal(self) -> bool:
        return is_terminal(self.state)

    @property
    def current(self) -> bool:
        return not self.cancelled and not self.terminal


class IntentLifecycle:
    """Drives one `AttemptContext` through gateway calls, challenge and polling."""

    def __init__(
        self,
        ctx: AttemptContext,
        gateway,
        outcome_handler: OutcomeHandler,
        *,
        surface: ChallengeSurface,
        channel_factory: Callable[[], ChallengeChannel],
        poll_interval_seconds: float,
        poll_budget_seconds: float,
        poll_initial_delay_seconds: float,
        post_success_hook: PostSuccessHook | None = None,
        service_name: str = "chargeflow",
    ) -> None:
        self.ctx = ctx
        self.gateway = gateway
        self.outcome_handler = outcome_handler
        self.surface = surface
        self.channel_factory = channel_factory
        self.poll_interval_seconds = poll_interval_seconds
        self.poll_budget_seconds = poll_budget_seconds
        self.poll_initial_delay_seconds = poll_initial_delay_seconds
        self.post_success_hook = post_success_hook
        self.service_name = service_name
        self._tasks: set[asyncio.Task] = set()

    def _transition(self, new_state: AttemptState) -> None:
        validate_transition(self.ctx.state, new_state)
        logger.info(
            "attempt_transition attempt_id=%s from=%s to=%s",
            self.ctx.attempt_id,
            self.ctx.state.value,
            new_state.value,
        )
        self.ctx.state = new_state

    def _discard(self, what: str) -> None:
        stale_responses_discarded_total.labels(service=self.service_name).inc()
        logger.info(
            "stale_response_discarded attempt_id=%s what=%s state=%s cancelled=%s",
            self.ctx.attempt_id,
            what,
            self.ctx.state.value,
            self.ctx.cancelled,
        )

    def _spawn(self, coro: Coroutine) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _bind_log_context(self) -> None:
        bind_attempt(self.ctx.reference, self.ctx.intent.id if self.ctx.intent else None)

    async def create_intent(self, description: str | None = None, metadata: dict | None = None) -> None:
        """`IDLE -> INTENT_CREATED`, or `FAILED` at once; never retried."""

        self._bind_log_context()
        self.ctx.in_flight = True
        try:
            intent = await self.gateway.create_intent(
                self.ctx.amount,
                self.ctx.currency,
                self.ctx.reference,
                description=description,
                metadata=metadata,
            )
        except AuthorizationError as exc:
            self.ctx.in_flight = False
            if self.ctx.current:
                await self._fail(exc)
            return
        self.ctx.in_flight = False
        if not self.ctx.current:
            self._discard("create_intent")
            return
        self.ctx.intent = intent
        self._bind_log_context()
        self._transition(AttemptState.INTENT_CREATED)

    async def submit_instrument(self, selection: InstrumentSelection, billing: Billing) -> None:
        """Create and attach an instrument, then route on the attach status.

        A rejected instrument leaves the attempt in `INTENT_CREATED` so the
        same intent can be retried with corrected details.
        """

        if not self.ctx.current:
            raise ValueError(f"attempt {self.ctx.attempt_id} is no longer current")
        if self.ctx.in_flight:
            raise AttemptInProgress("a gateway call is already in flight", reference=self.ctx.reference)
        validate_transition(self.ctx.state, AttemptState.INSTRUMENT_ATTACHED)
        self._bind_log_context()
        intent = self.ctx.intent

        self.ctx.in_flight = True
        try:
            try:
                instrument = await self.gateway.create_instrument(selection.kind, selection.card, billing)
            except AuthorizationError as exc:
                if not self.ctx.current:
                    self._discard("create_instrument")
                    return
                exc.reference = self.ctx.reference
                self.ctx.last_error = exc
                logger.info("instrument_rejected reason=%s message=%s", exc.reason, exc.message)
                self.ctx.in_flight = False
                await invoke_callback(self.ctx.on_error, exc)
                return
            if not self.ctx.current:
                self._discard("create_instrument")
                return
            self.ctx.instrument = instrument
            self.ctx.last_error = None

            try:
                result = await self.gateway.attach_instrument(intent.id, intent.client_secret, instrument.id)
            except AuthorizationError as exc:
                # Not retried: a blind re-attach could double-charge.
                if self.ctx.current:
                    await self._fail(exc)
                else:
                    self._discard("attach_instrument")
                return
        finally:
            self.ctx.in_flight = False

        if not self.ctx.current:
            self._discard("attach_instrument")
            return
        self._transition(AttemptState.INSTRUMENT_ATTACHED)
        await self._route(result)

    async def _route(self, result: IntentStatus) -> None:
        try:
            self.ctx.intent = self.ctx.intent.apply(result)
        except ValueError as exc:
            await self._fail(GatewayUnavailable(f"attach_instrument: {exc}"))
            return
        status = result.status
        if status is AuthorizationStatus.SUCCEEDED:
            await self._succeed()
        elif status is AuthorizationStatus.AWAITING_CHALLENGE and result.challenge is not None:
            self._transition(AttemptState.AWAITING_CHALLENGE)
            self._present_challenge(result.challenge)
        elif status in (AuthorizationStatus.PROCESSING, AuthorizationStatus.AWAITING_CHALLENGE):
            # A challenge status without a URL leaves nothing to present; poll instead.
            self._transition(AttemptState.PROCESSING)
            self._start_polling(self.poll_initial_delay_seconds)
        else:
            await self._fail(Declined(result.failure_reason or DECLINED_MESSAGE))

    def _present_challenge(self, challenge: ChallengeDescriptor) -> None:
        self.ctx.challenge = challenge
        self.ctx.bridge = AuthenticationBridge(
            self.ctx.reference,
            self.surface,
            self.channel_factory(),
            on_resolved=self._on_challenge_resolved,
            on_abandoned=self._on_challenge_abandoned,
        )
        self.ctx.bridge.present(challenge)

    def _on_challenge_resolved(self) -> None:
        if not self.ctx.current:
            self._discard("challenge_resolved")
            return
        self.ctx.challenge = None
        self._transition(AttemptState.PROCESSING)
        self._start_polling(0.0)

    def _on_challenge_abandoned(self) -> None:
        if not self.ctx.current:
            return
        self.ctx.challenge = None
        self._spawn(self._abandon())

    async def _abandon(self) -> None:
        if not self.ctx.current:
            self._discard("challenge_abandoned")
            return
        await self._fail(ChallengeAbandoned("payer closed the authentication challenge"))

    def _start_polling(self, initial_delay: float) -> None:
        intent = self.ctx.intent

        async def check() -> IntentStatus:
            return await self.gateway.check_status(intent.id, intent.client_secret)

        self.ctx.poller = StatusPoller(
            check,
            self._on_poll_done,
            interval_seconds=self.poll_interval_seconds,
            budget_seconds=self.poll_budget_seconds,
            service_name=self.service_name,
        )
        self.ctx.poller.start(initial_delay)

    def _on_poll_done(self, status: IntentStatus | None, error: AuthorizationError | None) -> None:
        self._spawn(self.apply_poll_result(status, error))

    async def apply_poll_result(self, status: IntentStatus | None, error: AuthorizationError | None) -> None:
        if not self.ctx.current:
            self._discard("check_status")
            return
        self._bind_log_context()
        if error is not None:
            await self._fail(error)
            return
        try:
            self.ctx.intent = self.ctx.intent.apply(status)
        except ValueError as exc:
            # The poller has already stopped, so nothing else would end the attempt.
            await self._fail(GatewayUnavailable(f"check_status: {exc}"))
            return
        if status.status is AuthorizationStatus.SUCCEEDED:
            await self._succeed()
        else:
            await self._fail(Declined(status.failure_reason or DECLINED_MESSAGE))

    async def _succeed(self) -> None:
        self._transition(AttemptState.SUCCEEDED)
        self._stop_background()
        outcome = await self.outcome_handler.succeeded(self.ctx, self.post_success_hook)
        self._resolve(outcome)

    async def _fail(self, error: AuthorizationError) -> None:
        self._transition(AttemptState.FAILED)
        self.ctx.last_error = error
        self._stop_background()
        outcome = await self.outcome_handler.failed(self.ctx, error)
        self._resolve(outcome)

    def _resolve(self, outcome: AuthorizationOutcome) -> None:
        self.ctx.finished_at = time.monotonic()
        if self.ctx.done is not None and not self.ctx.done.done():
            self.ctx.done.set_result(outcome)

    def _stop_background(self) -> None:
        if self.ctx.poller is not None:
            self.ctx.poller.cancel()
        if self.ctx.bridge is not None:
            self.ctx.bridge.teardown()

    def deliver_message(self, payload: object) -> bool:
        if self.ctx.bridge is None or not self.ctx.current:
            return False
        return self.ctx.bridge.deliver(payload)

    def check_now(self) -> bool:
        """Manual status check while a challenge is shown."""

        if self.ctx.state is not AttemptState.AWAITING_CHALLENGE or self.ctx.bridge is None:
            return False
        self.ctx.bridge.trigger_check()
        return True

    def abandon_challenge(self) -> bool:
        if self.ctx.state is not AttemptState.AWAITING_CHALLENGE or self.ctx.bridge is None:
            return False
        self.ctx.bridge.cancel()
        return True

    def cancel(self) -> None:
        """Stop everything for this attempt without invoking caller callbacks."""

        if self.ctx.cancelled:
            return
        self.ctx.cancelled = True
        self.ctx.finished_at = time.monotonic()
        self._stop_background()
        for task in list(self._tasks):
            task.cancel()
        if self.ctx.done is not None and not self.ctx.done.done():
            self.ctx.done.cancel()
        logger.info("attempt_cancelled attempt_id=%s state=%s", self.ctx.attempt_id, self.ctx.state.value)
