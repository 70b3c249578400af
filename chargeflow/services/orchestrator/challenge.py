"""Step-up authentication sub-flow.

The bridge presents the gateway's challenge URL on a `ChallengeSurface` and
waits on a `ChallengeChannel` for the payer to finish. Which channel is used
(sentinel message, manual check, timed fallback) is invisible to the bridge.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Protocol

from chargeflow.common.logging import logger
from chargeflow.services.gateway.models import ChallengeDescriptor


class ChallengeSurface(Protocol):
    """Host-side frame or redirect that shows the challenge to the payer."""

    def open(self, reference: str, challenge: ChallengeDescriptor) -> None: ...

    def close(self, reference: str) -> None: ...


class RecordingSurface:
    """Keeps the currently presented challenge per reference for API callers."""

    def __init__(self) -> None:
        self.presented: dict[str, ChallengeDescriptor] = {}

    def open(self, reference: str, challenge: ChallengeDescriptor) -> None:
        self.presented[reference] = challenge

    def close(self, reference: str) -> None:
        self.presented.pop(reference, None)


class ChallengeChannel(ABC):
    """Source of the "challenge resolved" event."""

    def __init__(self) -> None:
        self._resolved = asyncio.Event()

    @property
    def resolved(self) -> bool:
        return self._resolved.is_set()

    async def wait(self) -> None:
        await self._resolved.wait()

    def trigger(self) -> None:
        """Caller-requested status check; every channel honors it."""

        self._resolved.set()

    @abstractmethod
    def deliver(self, payload: object) -> bool:
        """Offer a cross-document message; returns True if it resolved the channel."""


class SentinelMessageChannel(ChallengeChannel):
    """Resolves when the completion page posts the agreed sentinel string."""

    def __init__(self, sentinel: str) -> None:
        super().__init__()
        self.sentinel = sentinel

    def deliver(self, payload: object) -> bool:
        if payload != self.sentinel:
            logger.info("challenge_message_ignored")
            return False
        self._resolved.set()
        return True


class ManualCheckChannel(ChallengeChannel):
    """No completion message exists; only an explicit `trigger()` resolves it."""

    def deliver(self, payload: object) -> bool:
        return False


class DelayedCheckChannel(SentinelMessageChannel):
    """Sentinel channel that also gives up waiting after `delay_seconds`.

    Covers completion pages that never post the sentinel: the status check
    then runs anyway and the gateway decides.
    """

    def __init__(self, sentinel: str, delay_seconds: float) -> None:
        super().__init__(sentinel)
        self.delay_seconds = delay_seconds

    async def wait(self) -> None:
        try:
            await asyncio.wait_for(self._resolved.wait(), timeout=self.delay_seconds)
        except asyncio.TimeoutError:
            self._resolved.set()


class AuthenticationBridge:
    """Runs one challenge for one attempt."""

    def __init__(
        self,
        reference: str,
        surface: ChallengeSurface,
        channel: ChallengeChannel,
        on_resolved: Callable[[], None],
        on_abandoned: Callable[[], None],
    ) -> None:
        self.reference = reference
        self.surface = surface
        self.channel = channel
        self.on_resolved = on_resolved
        self.on_abandoned = on_abandoned
        self.challenge: ChallengeDescriptor | None = None
        self._task: asyncio.Task | None = None
        self._closed = False

    @property
    def active(self) -> bool:
        return self._task is not None and not self._closed

    def present(self, challenge: ChallengeDescriptor) -> None:
        if self._task is not None:
            raise RuntimeError("challenge already presented for this attempt")
        self.challenge = challenge
        self.surface.open(self.reference, challenge)
        logger.info("challenge_presented url=%s", challenge.url)
        self._task = asyncio.get_running_loop().create_task(self._await_resolution())

    async def _await_resolution(self) -> None:
        await self.channel.wait()
        if self._closed:
            return
        self._close_surface()
        logger.info("challenge_resolved")
        self.on_resolved()

    def deliver(self, payload: object) -> bool:
        return self.active and self.channel.deliver(payload)

    def trigger_check(self) -> None:
        if self.active:
            self.channel.trigger()

    def cancel(self) -> None:
        """Payer abandoned the challenge: tear down and report it."""

        if self._closed:
            return
        self.teardown()
        logger.info("challenge_abandoned")
        self.on_abandoned()

    def teardown(self) -> None:
        """Close the surface and stop waiting, without any callback."""

        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._close_surface()

    def _close_surface(self) -> None:
        if not self._closed:
            self._closed = True
            self.surface.close(self.reference)
