"""Terminal-state effects: callbacks, bookkeeping hook, notification, failure redirect."""

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol

from chargeflow.common.config import settings
from chargeflow.common.errors import AuthorizationError, AuthorizationTimeout
from chargeflow.common.logging import logger
from chargeflow.common.metrics import authorization_duration_seconds, authorization_outcomes_total
from chargeflow.services.orchestrator.schemas import AuthorizationOutcome

if TYPE_CHECKING:
    from chargeflow.services.orchestrator.lifecycle import AttemptContext

PostSuccessHook = Callable[["AttemptContext"], Awaitable[None]]


class Navigator(Protocol):
    def navigate(self, reference: str, destination: str) -> None: ...


class NotificationSink(Protocol):
    def notify(self, reference: str, outcome: AuthorizationOutcome) -> None: ...


class ReconciliationQueue(Protocol):
    def enqueue(self, reference: str, intent_id: str | None, error: str) -> Any: ...


class RecordingNavigator:
    """Navigator for non-browser callers: remembers the last destination."""

    def __init__(self) -> None:
        self.destinations: dict[str, str] = {}

    def navigate(self, reference: str, destination: str) -> None:
        self.destinations[reference] = destination


def mark_deposit_paid(booking_store) -> PostSuccessHook:
    """Post-success hook for the deposit variant."""

    async def hook(ctx: "AttemptContext") -> None:
        await booking_store.mark_deposit_paid(ctx.reference)

    return hook


async def invoke_callback(callback: Callable | None, *args) -> None:
    """Run a caller callback that may be sync or async; its errors are the caller's."""

    if callback is None:
        return
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("caller_callback_failed callback=%s", getattr(callback, "__name__", callback))


class OutcomeHandler:
    """Maps `SUCCEEDED` / `FAILED` attempts to caller-visible effects."""

    def __init__(
        self,
        navigator: Navigator,
        notifier: NotificationSink | None = None,
        reconciliation: ReconciliationQueue | None = None,
        redirect_delay_seconds: float | None = None,
        redirect_path: str | None = None,
        service_name: str | None = None,
    ) -> None:
        self.navigator = navigator
        self.notifier = notifier
        self.reconciliation = reconciliation
        self.redirect_delay_seconds = (
            settings.failure_redirect_delay_seconds if redirect_delay_seconds is None else redirect_delay_seconds
        )
        self.redirect_path = redirect_path or settings.failure_redirect_path
        self.service_name = service_name or settings.service_name
        self._redirects: set[asyncio.Task] = set()

    def _observe(self, ctx: "AttemptContext", outcome: str, reason: str) -> None:
        authorization_outcomes_total.labels(service=self.service_name, outcome=outcome, reason=reason).inc()
        authorization_duration_seconds.labels(service=self.service_name, outcome=outcome).observe(
            max(0.0, time.monotonic() - ctx.started_at)
        )

    def _notify(self, reference: str, outcome: AuthorizationOutcome) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(reference, outcome)
        except Exception as exc:
            logger.warning("notification_failed error=%s", exc)

    async def succeeded(self, ctx: "AttemptContext", hook: PostSuccessHook | None) -> AuthorizationOutcome:
        intent = ctx.intent
        bookkeeping_pending = False
        if hook is not None:
            try:
                await hook(ctx)
            except Exception as exc:
                # The charge stands; the bookkeeping write is retried out of band.
                bookkeeping_pending = True
                logger.error(
                    "post_success_hook_failed reconciliation_required intent_id=%s error=%s",
                    intent.id if intent else None,
                    exc,
                )
                self._enqueue_reconciliation(ctx, str(exc))

        outcome = AuthorizationOutcome(
            reference=ctx.reference,
            attempt_id=ctx.attempt_id,
            succeeded=True,
            intent_id=intent.id if intent else None,
            amount=intent.amount if intent else None,
            currency=intent.currency if intent else None,
            bookkeeping_pending=bookkeeping_pending,
        )
        ctx.outcome = outcome
        self._observe(ctx, "succeeded", "none")
        logger.info("authorization_succeeded attempt_id=%s", ctx.attempt_id)
        await invoke_callback(ctx.on_success, outcome)
        self._notify(ctx.reference, outcome)
        return outcome

    def _enqueue_reconciliation(self, ctx: "AttemptContext", error: str) -> None:
        if self.reconciliation is None:
            logger.error("reconciliation_queue_missing reference=%s", ctx.reference)
            return
        try:
            self.reconciliation.enqueue(ctx.reference, ctx.intent.id if ctx.intent else None, error)
        except Exception:
            logger.exception("reconciliation_enqueue_failed reference=%s", ctx.reference)

    async def failed(self, ctx: "AttemptContext", error: AuthorizationError) -> AuthorizationOutcome:
        error.reference = ctx.reference
        outcome = AuthorizationOutcome(
            reference=ctx.reference,
            attempt_id=ctx.attempt_id,
            succeeded=False,
            intent_id=ctx.intent.id if ctx.intent else None,
            amount=ctx.intent.amount if ctx.intent else None,
            currency=ctx.intent.currency if ctx.intent else None,
            reason=error.reason,
            message=error.message,
        )
        ctx.outcome = outcome
        self._observe(ctx, "failed", error.reason)
        if isinstance(error, AuthorizationTimeout):
            logger.warning(
                "authorization_outcome_ambiguous intent_id=%s reason=%s charge may still settle at the gateway",
                outcome.intent_id,
                error.reason,
            )
        else:
            logger.info("authorization_failed attempt_id=%s reason=%s", ctx.attempt_id, error.reason)
        await invoke_callback(ctx.on_error, error)
        self._notify(ctx.reference, outcome)
        self._schedule_redirect(ctx)
        return outcome

    def _schedule_redirect(self, ctx: "AttemptContext") -> None:
        destination = self.redirect_path.format(reference=ctx.reference)
        task = asyncio.get_running_loop().create_task(self._redirect_later(ctx, destination))
        self._redirects.add(task)
        task.add_done_callback(self._redirects.discard)

    async def _redirect_later(self, ctx: "AttemptContext", destination: str) -> None:
        await asyncio.sleep(self.redirect_delay_seconds)
        ctx.redirect_to = destination
        self.navigator.navigate(ctx.reference, destination)

    async def drain(self) -> None:
        """Wait for scheduled failure redirects (shutdown and tests)."""

        if self._redirects:
            await asyncio.gather(*list(self._redirects), return_exceptions=True)

    def close(self) -> None:
        for task in list(self._redirects):
            task.cancel()
