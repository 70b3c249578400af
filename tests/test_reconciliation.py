import asyncio

import pytest

from chargeflow.common.db import Base, make_engine, make_session_factory
from chargeflow.services.reconciliation.models import DepositReconciliation
from chargeflow.services.reconciliation.service import DONE, GAVE_UP, PENDING, ReconciliationService

from conftest import FakeBookingStore


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield make_session_factory(engine)
    engine.dispose()


def row(session_factory, row_id):
    with session_factory() as db:
        return db.get(DepositReconciliation, row_id)


def test_enqueue_then_replay_marks_done(session_factory):
    store = FakeBookingStore()
    service = ReconciliationService(session_factory, store, max_attempts=3)
    row_id = service.enqueue("BK-1", "pi_1", "booking store down")

    counts = asyncio.run(service.run_once())

    assert counts == {DONE: 1, PENDING: 0, GAVE_UP: 0}
    assert store.calls == ["BK-1"]
    saved = row(session_factory, row_id)
    assert saved.status == DONE
    assert saved.attempts == 1
    assert saved.last_error is None


def test_failed_replay_stays_pending_until_limit(session_factory):
    """Each failed pass bumps attempts; the last allowed one gives up."""

    store = FakeBookingStore(error=RuntimeError("still down"))
    service = ReconciliationService(session_factory, store, max_attempts=2)
    row_id = service.enqueue("BK-2", "pi_2", "booking store down")

    first = asyncio.run(service.run_once())
    after_first = row(session_factory, row_id)
    second = asyncio.run(service.run_once())
    third = asyncio.run(service.run_once())

    assert first == {DONE: 0, PENDING: 1, GAVE_UP: 0}
    assert after_first.status == PENDING and after_first.last_error == "still down"
    assert second == {DONE: 0, PENDING: 0, GAVE_UP: 1}
    assert third == {DONE: 0, PENDING: 0, GAVE_UP: 0}
    assert row(session_factory, row_id).attempts == 2
    assert store.calls == ["BK-2", "BK-2"]


def test_run_once_with_empty_queue(session_factory):
    service = ReconciliationService(session_factory, FakeBookingStore(), max_attempts=3)
    assert asyncio.run(service.run_once()) == {DONE: 0, PENDING: 0, GAVE_UP: 0}
