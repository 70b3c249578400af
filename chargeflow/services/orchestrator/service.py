"""Authorization orchestrator.

One engine serves both the full-amount charge and the deposit charge; they
differ only in the post-success hook and the metadata sent with the intent.
"""

import asyncio
import time
from collections.abc import Callable

from chargeflow.common.config import settings
from chargeflow.common.errors import AttemptInProgress
from chargeflow.common.logging import bind_attempt, logger
from chargeflow.common.metrics import authorization_attempts_total, authorization_rejected_total
from chargeflow.common.money import from_minor_units
from chargeflow.services.gateway.models import Billing, InstrumentSelection
from chargeflow.services.orchestrator.challenge import (
    ChallengeChannel,
    ChallengeSurface,
    DelayedCheckChannel,
    RecordingSurface,
    SentinelMessageChannel,
)
from chargeflow.services.orchestrator.lifecycle import AttemptContext, IntentLifecycle
from chargeflow.services.orchestrator.outcome import OutcomeHandler, PostSuccessHook
from chargeflow.services.orchestrator.schemas import (
    AuthorizationOutcome,
    AuthorizationRequest,
    AuthorizationView,
    ChargeVariant,
)


def default_channel_factory() -> ChallengeChannel:
    if settings.challenge_fallback_seconds:
        return DelayedCheckChannel(settings.challenge_sentinel, settings.challenge_fallback_seconds)
    return SentinelMessageChannel(settings.challenge_sentinel)


class AttemptRegistry:
    """Latest attempt per payment reference.

    Share one registry between orchestrators that charge the same references
    so the one-outstanding-attempt rule spans both. Finished attempts stay
    readable for `retention_seconds`, then are dropped on the next `reserve()`.
    """

    def __init__(
        self,
        retention_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lifecycles: dict[str, IntentLifecycle] = {}
        self.retention_seconds = (
            settings.attempt_retention_seconds if retention_seconds is None else retention_seconds
        )
        self.clock = clock

    def __len__(self) -> int:
        return len(self._lifecycles)

    def evict_finished(self) -> int:
        """Drop finished or cancelled attempts past retention; returns how many."""

        cutoff = self.clock() - self.retention_seconds
        expired = [
            reference
            for reference, lifecycle in self._lifecycles.items()
            if not lifecycle.ctx.current
            and lifecycle.ctx.finished_at is not None
            and lifecycle.ctx.finished_at <= cutoff
        ]
        for reference in expired:
            del self._lifecycles[reference]
        if expired:
            logger.info("attempt_registry_evicted count=%s remaining=%s", len(expired), len(self._lifecycles))
        return len(expired)

    def reserve(self, lifecycle: IntentLifecycle) -> None:
        self.evict_finished()
        reference = lifecycle.ctx.reference
        existing = self._lifecycles.get(reference)
        if existing is not None and existing.ctx.current:
            raise AttemptInProgress(
                f"attempt {existing.ctx.attempt_id} is still {existing.ctx.state.value}",
                reference=reference,
            )
        self._lifecycles[reference] = lifecycle

    def get(self, reference: str) -> IntentLifecycle | None:
        return self._lifecycles.get(reference)

    def outstanding(self) -> list[IntentLifecycle]:
        return [lifecycle for lifecycle in self._lifecycles.values() if lifecycle.ctx.current]


class AuthorizationOrchestrator:
    """Public entrypoint: `authorize()` and the controls around one attempt."""

    def __init__(
        self,
        gateway,
        outcome_handler: OutcomeHandler,
        *,
        registry: AttemptRegistry | None = None,
        variant: ChargeVariant = ChargeVariant.FULL,
        post_success_hook: PostSuccessHook | None = None,
        surface: ChallengeSurface | None = None,
        channel_factory: Callable[[], ChallengeChannel] | None = None,
        poll_interval_seconds: float | None = None,
        poll_budget_seconds: float | None = None,
        poll_initial_delay_seconds: float | None = None,
        service_name: str | None = None,
    ) -> None:
        self.gateway = gateway
        self.outcome_handler = outcome_handler
        self.registry = registry if registry is not None else AttemptRegistry()
        self.variant = variant
        self.post_success_hook = post_success_hook
        self.surface = surface or RecordingSurface()
        self.channel_factory = channel_factory or default_channel_factory
        self.poll_interval_seconds = (
            settings.poll_interval_seconds if poll_interval_seconds is None else poll_interval_seconds
        )
        self.poll_budget_seconds = settings.poll_budget_seconds if poll_budget_seconds is None else poll_budget_seconds
        self.poll_initial_delay_seconds = (
            settings.poll_initial_delay_seconds if poll_initial_delay_seconds is None else poll_initial_delay_seconds
        )
        self.service_name = service_name or settings.service_name

    def _lifecycle(self, reference: str) -> IntentLifecycle:
        lifecycle = self.registry.get(reference)
        if lifecycle is None:
            raise KeyError(reference)
        return lifecycle

    async def authorize(
        self,
        request: AuthorizationRequest,
        on_success: Callable | None = None,
        on_error: Callable | None = None,
    ) -> AttemptContext:
        """Start an attempt: create the intent, then create and attach the instrument.

        Returns once the attach response is routed; the final result arrives
        through the callbacks or `wait()`. Raises `AttemptInProgress`, before
        any gateway call, if the reference already has an outstanding attempt.
        """

        bind_attempt(request.reference)
        ctx = AttemptContext(
            reference=request.reference,
            amount=request.amount,
            currency=request.currency.upper(),
            on_success=on_success,
            on_error=on_error,
        )
        ctx.done = asyncio.get_running_loop().create_future()
        lifecycle = IntentLifecycle(
            ctx,
            self.gateway,
            self.outcome_handler,
            surface=self.surface,
            channel_factory=self.channel_factory,
            poll_interval_seconds=self.poll_interval_seconds,
            poll_budget_seconds=self.poll_budget_seconds,
            poll_initial_delay_seconds=self.poll_initial_delay_seconds,
            post_success_hook=self.post_success_hook,
            service_name=self.service_name,
        )
        try:
            self.registry.reserve(lifecycle)
        except AttemptInProgress:
            authorization_rejected_total.labels(service=self.service_name).inc()
            logger.warning("authorization_rejected reason=attempt_in_progress")
            raise

        authorization_attempts_total.labels(service=self.service_name, variant=self.variant.value).inc()
        logger.info(
            "authorization_started attempt_id=%s variant=%s amount=%s currency=%s kind=%s",
            ctx.attempt_id,
            self.variant.value,
            from_minor_units(ctx.amount),
            ctx.currency,
            request.selection.kind.value,
        )
        metadata = {**request.metadata, "is_deposit": self.variant is ChargeVariant.DEPOSIT}
        await lifecycle.create_intent(request.description, metadata)
        if ctx.current:
            await lifecycle.submit_instrument(request.selection, request.billing)
        return ctx

    async def submit_instrument(
        self, reference: str, selection: InstrumentSelection, billing: Billing
    ) -> AttemptContext:
        """Retry the instrument step on the existing intent after a rejection."""

        lifecycle = self._lifecycle(reference)
        bind_attempt(reference)
        await lifecycle.submit_instrument(selection, billing)
        return lifecycle.ctx

    async def wait(self, reference: str, timeout: float | None = None) -> AuthorizationOutcome:
        ctx = self._lifecycle(reference).ctx
        return await asyncio.wait_for(asyncio.shield(ctx.done), timeout=timeout)

    def get(self, reference: str) -> AttemptContext | None:
        lifecycle = self.registry.get(reference)
        return lifecycle.ctx if lifecycle else None

    def deliver_message(self, reference: str, payload: object) -> bool:
        """Relay a cross-document message from the challenge page."""

        return self._lifecycle(reference).deliver_message(payload)

    def check_now(self, reference: str) -> bool:
        return self._lifecycle(reference).check_now()

    def abandon_challenge(self, reference: str) -> bool:
        return self._lifecycle(reference).abandon_challenge()

    def cancel(self, reference: str) -> bool:
        lifecycle = self.registry.get(reference)
        if lifecycle is None or lifecycle.ctx.cancelled:
            return False
        lifecycle.cancel()
        return True

    def view(self, reference: str) -> AuthorizationView:
        ctx = self._lifecycle(reference).ctx
        return AuthorizationView(
            reference=ctx.reference,
            attempt_id=ctx.attempt_id,
            state="CANCELLED" if ctx.cancelled else ctx.state.value,
            intent_id=ctx.intent.id if ctx.intent else None,
            challenge=ctx.challenge,
            last_error=ctx.last_error.to_dict() if ctx.last_error else None,
            outcome=ctx.outcome,
            redirect_to=ctx.redirect_to,
        )

    def shutdown(self) -> None:
        for lifecycle in self.registry.outstanding():
            lifecycle.cancel()
        self.outcome_handler.close()
