"""
Concurrency Tests.

Validates that concurrent gate, weighbridge and stockpile operations on
the same record are serialized, and that different records do not block
each other.
"""

import pytest
from concurrent.futures import ThreadPoolExecutor

from weighbridge.app.core.exceptions import IllegalTransitionError
from weighbridge.app.models.allocation import TransitionContext
from weighbridge.app.models.allocation_enums import AllocationStatus, LifecycleEvent
from weighbridge.app.services.audit import AuditAction
from weighbridge.app.services.record_locking import RecordLockRegistry
from weighbridge.tests.factories import READY_DRIVER

WORKERS = 8


def run_concurrently(fn, count):
    """Run ``fn`` ``count`` times across threads; return results and exceptions."""
    results, errors = [], []
    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        futures = [pool.submit(fn, n) for n in range(count)]
        for future in futures:
            try:
                results.append(future.result())
            except Exception as exc:
                errors.append(exc)
    return results, errors


def test_concurrent_check_in_applies_once(engine):
    """Two gate events for the same truck: exactly one check-in wins."""
    allocation = engine.create_allocation("ND 123-456", "ORD-1001")

    results, errors = run_concurrently(
        lambda _: engine.transition(allocation.id, LifecycleEvent.CHECK_IN, TransitionContext(site_id="mine")),
        WORKERS,
    )

    assert len(results) == 1
    assert len(errors) == WORKERS - 1
    assert all(isinstance(e, IllegalTransitionError) for e in errors)
    assert engine.get_allocation(allocation.id).status == AllocationStatus.ARRIVED
    assert len(engine.journey(allocation.id)) == 1
    assert len(engine.audit_trail(action=AuditAction.TRANSITION_REJECTED)) == WORKERS - 1


def test_concurrent_credits_are_not_lost(engine):
    _, errors = run_concurrently(lambda _: engine.credit_stockpile("SP-MANGANESE", 10), 50)

    assert errors == []
    assert engine.ledger.get("SP-MANGANESE").current_tonnes == pytest.approx(1500)
    assert len(engine.stockpile_audit("SP-MANGANESE")) == 50


def test_concurrent_credits_clamp_at_capacity(engine):
    _, errors = run_concurrently(lambda _: engine.credit_stockpile("SP-MANGANESE", 500), 12)

    assert errors == []
    stockpile = engine.ledger.get("SP-MANGANESE")
    assert stockpile.current_tonnes == 5000
    entries = engine.stockpile_audit("SP-MANGANESE")
    assert sum(e.applied_tonnes for e in entries) == pytest.approx(4000)
    assert sum(e.overflow_tonnes for e in entries) == pytest.approx(2000)


def test_concurrent_measurements_get_unique_ids(engine):
    allocations = [engine.create_allocation(f"ND {n}", "ORD-1001") for n in range(WORKERS)]

    results, errors = run_concurrently(
        lambda n: engine.record_measurement(allocations[n % WORKERS].id, "mine", 50000, 15000),
        40,
    )

    assert errors == []
    assert len({m.id for m in results}) == 40
    assert len({m.sequence for m in results}) == 40


def test_independent_allocations_progress_in_parallel(engine):
    allocations = [engine.create_allocation(f"ND {n}", "ORD-1001", route=["mine"]) for n in range(WORKERS)]

    def drive(n):
        allocation_id = allocations[n].id
        engine.transition(allocation_id, LifecycleEvent.CHECK_IN)
        engine.transition(allocation_id, LifecycleEvent.BEGIN_WEIGH)
        engine.record_measurement(allocation_id, "mine", 50000, 15000)
        engine.transition(allocation_id, LifecycleEvent.WEIGH_COMPLETE)
        return engine.transition(allocation_id, LifecycleEvent.DISPATCH, READY_DRIVER)

    results, errors = run_concurrently(drive, WORKERS)

    assert errors == []
    assert {a.status for a in results} == {AllocationStatus.COMPLETED}


def test_snapshots_taken_during_updates_are_consistent(engine):
    allocation = engine.create_allocation("ND 1", "ORD-1001", route=["mine"])
    events = [LifecycleEvent.CHECK_IN, LifecycleEvent.BEGIN_WEIGH]

    def work(n):
        if n < len(events):
            return engine.transition(allocation.id, events[n])
        return engine.snapshot()

    _, errors = run_concurrently(work, 30)

    # Check-in and begin-weigh may race each other; only legal outcomes remain
    assert all(isinstance(e, IllegalTransitionError) for e in errors)
    statuses = {a.status for a in engine.snapshot().allocations}
    assert statuses <= {AllocationStatus.ARRIVED, AllocationStatus.WEIGHING}


def test_lock_registry_returns_same_lock_per_key():
    registry = RecordLockRegistry("test")
    assert registry.lock_for("A") is registry.lock_for("A")
    assert registry.lock_for("A") is not registry.lock_for("B")
    with registry.hold("A"):
        with registry.hold("A"):
            pass
