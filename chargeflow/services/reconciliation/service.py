"""Retry queue for deposit bookkeeping that failed after a successful charge.

The charge is never reversed for a bookkeeping failure; instead the write is
stored here and replayed against the booking store until it lands or the
attempt limit is reached.
"""

import asyncio
from datetime import datetime, timezone

from sqlalchemy import func, select, update

from chargeflow.common.config import settings
from chargeflow.common.logging import logger
from chargeflow.common.metrics import reconciliation_attempts_total, reconciliation_pending_total
from chargeflow.services.reconciliation.models import DepositReconciliation

PENDING = "PENDING"
PROCESSING = "PROCESSING"
DONE = "DONE"
GAVE_UP = "GAVE_UP"


class ReconciliationService:
    def __init__(
        self,
        session_factory,
        booking_store,
        max_attempts: int | None = None,
        service_name: str | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.booking_store = booking_store
        self.max_attempts = max_attempts or settings.reconciliation_max_attempts
        self.service_name = service_name or settings.service_name

    def enqueue(self, reference: str, intent_id: str | None, error: str) -> str:
        """Record one failed bookkeeping write; returns the row id."""

        with self.session_factory() as db:
            row = DepositReconciliation(
                reference=reference,
                intent_id=intent_id,
                status=PENDING,
                attempts=0,
                last_error=error[:500],
            )
            db.add(row)
            db.commit()
            self._update_backlog(db)
            logger.warning("reconciliation_enqueued id=%s intent_id=%s", row.id, intent_id)
            return row.id

    def _claim_batch(self, db, limit: int) -> list[DepositReconciliation]:
        rows = (
            db.execute(
                select(DepositReconciliation)
                .where(DepositReconciliation.status == PENDING)
                .order_by(DepositReconciliation.created_at)
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            .scalars()
            .all()
        )
        for row in rows:
            row.status = PROCESSING
        db.commit()
        return rows

    def _update_backlog(self, db) -> None:
        pending = db.execute(
            select(func.count())
            .select_from(DepositReconciliation)
            .where(DepositReconciliation.status.in_((PENDING, PROCESSING)))
        ).scalar_one()
        reconciliation_pending_total.labels(service=self.service_name).set(float(pending))

    async def run_once(self, limit: int = 50) -> dict[str, int]:
        """Replay one batch; returns counts by resulting status."""

        with self.session_factory() as db:
            rows = self._claim_batch(db, limit)

        counts = {DONE: 0, PENDING: 0, GAVE_UP: 0}
        for row in rows:
            try:
                await self.booking_store.mark_deposit_paid(row.reference)
                new_status, error = DONE, None
                reconciliation_attempts_total.labels(service=self.service_name, result="ok").inc()
            except Exception as exc:
                new_status = GAVE_UP if row.attempts + 1 >= self.max_attempts else PENDING
                error = str(exc)[:500]
                reconciliation_attempts_total.labels(service=self.service_name, result="error").inc()
                logger.warning(
                    "reconciliation_retry_failed id=%s reference=%s attempt=%s error=%s",
                    row.id,
                    row.reference,
                    row.attempts + 1,
                    exc,
                )
            counts[new_status] += 1
            with self.session_factory() as db:
                db.execute(
                    update(DepositReconciliation)
                    .where(DepositReconciliation.id == row.id, DepositReconciliation.status == PROCESSING)
                    .values(
                        status=new_status,
                        attempts=row.attempts + 1,
                        last_error=error,
                        updated_at=datetime.now(timezone.utc),
                    )
                )
                db.commit()
            if new_status == GAVE_UP:
                logger.error("reconciliation_gave_up id=%s reference=%s manual action required", row.id, row.reference)

        with self.session_factory() as db:
            self._update_backlog(db)
        return counts

    async def worker(self, interval_seconds: float | None = None) -> None:
        """Continuously replay pending rows."""

        interval = interval_seconds or settings.reconciliation_interval_seconds
        while True:
            try:
                await self.run_once()
            except Exception as exc:
                logger.exception("reconciliation pass failed: %s", exc)
            await asyncio.sleep(interval)
