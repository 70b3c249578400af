"""Bounded, constant-interval status polling for one authorization attempt.

The loop runs as a single asyncio task; cancelling that task is the only way
to stop it, and once cancelled the poller never invokes its callback.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

from chargeflow.common.errors import AuthorizationError, AuthorizationTimeout, GatewayUnavailable
from chargeflow.common.logging import logger
from chargeflow.common.metrics import status_poll_checks_total
from chargeflow.services.gateway.models import IntentStatus

StatusCheck = Callable[[], Awaitable[IntentStatus]]
PollCallback = Callable[[IntentStatus | None, AuthorizationError | None], None]


class StatusPoller:
    """Repeats `check` until a terminal status, a hard error, or the budget runs out.

    `on_done(status, error)` fires exactly once per started loop unless the
    poller is cancelled first: with the terminal status on success, or with
    `AuthorizationTimeout` / a non-transient gateway error.
    """

    def __init__(
        self,
        check: StatusCheck,
        on_done: PollCallback,
        interval_seconds: float,
        budget_seconds: float,
        service_name: str = "chargeflow",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.check = check
        self.on_done = on_done
        self.interval_seconds = interval_seconds
        self.budget_seconds = budget_seconds
        self.service_name = service_name
        self.clock = clock
        self.checks = 0
        self._task: asyncio.Task | None = None
        self._cancelled = False

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def started(self) -> bool:
        return self._task is not None

    def start(self, initial_delay: float = 0.0) -> asyncio.Task:
        if self._task is not None:
            raise RuntimeError("poller already started for this attempt")
        if self._cancelled:
            raise RuntimeError("poller was cancelled")
        self._task = asyncio.get_running_loop().create_task(self._run(initial_delay))
        return self._task

    def cancel(self) -> None:
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _finish(self, status: IntentStatus | None, error: AuthorizationError | None) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self.on_done(status, error)

    async def _run(self, initial_delay: float) -> None:
        deadline = self.clock() + self.budget_seconds
        delay = initial_delay
        while True:
            if delay > 0:
                await asyncio.sleep(delay)
            if self.clock() >= deadline:
                logger.warning(
                    "status_poll_budget_exhausted checks=%s budget_s=%s", self.checks, self.budget_seconds
                )
                self._finish(None, AuthorizationTimeout(f"no terminal status after {self.budget_seconds}s"))
                return

            self.checks += 1
            try:
                status = await self.check()
            except GatewayUnavailable as exc:
                status_poll_checks_total.labels(service=self.service_name, result="unavailable").inc()
                logger.warning("status_poll_transient_error check=%s error=%s", self.checks, exc)
                delay = self.interval_seconds
                continue
            except AuthorizationError as exc:
                status_poll_checks_total.labels(service=self.service_name, result="error").inc()
                self._finish(None, exc)
                return

            status_poll_checks_total.labels(service=self.service_name, result=status.status.value).inc()
            if status.status.ends_attempt:
                self._finish(status, None)
                return
            logger.info("status_poll_pending check=%s status=%s", self.checks, status.status.value)
            delay = self.interval_seconds
