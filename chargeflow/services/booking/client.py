"""HTTP client for the external booking store's deposit bookkeeping call."""

import httpx

from chargeflow.common.config import settings
from chargeflow.common.logging import logger


class BookingStoreError(Exception):
    """The booking store did not confirm the write."""


class HttpBookingStore:
    def __init__(
        self,
        base_url: str | None = None,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.booking_store_url).rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def mark_deposit_paid(self, reference: str) -> None:
        """Mark the booking's deposit as paid; an already-paid deposit counts as success."""

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                resp = await client.post(f"{self.base_url}/bookings/{reference}/deposit-paid")
        except httpx.HTTPError as exc:
            raise BookingStoreError(f"booking store unreachable: {exc}") from exc
        if resp.status_code == 409:
            logger.info("booking_deposit_already_paid reference=%s", reference)
            return
        if resp.status_code >= 400:
            logger.error("booking_deposit_update_rejected reference=%s status=%s", reference, resp.status_code)
            raise BookingStoreError(f"booking store returned {resp.status_code}: {resp.text}")
