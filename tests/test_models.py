"""
Core Data Model Tests

Tests ResourceTypes, ResourceLedger, SchedulingInfo and ProcessDescriptor.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from models.resource import ResourceTypes
from models.ledger import LedgerInconsistencyError, LedgerStatus, ResourceLedger
from models.scheduling import SchedulingInfo
from models.process import (
    PriorityLevel,
    ProcessDescriptor,
    ProcessState,
    SchedulingPolicy,
)


def test_resource_types():
    """Test name-keyed maps to dense vectors and back."""
    print("\n" + "="*60)
    print("TEST: Resource Types")
    print("="*60)

    rt = ResourceTypes(["A", "B", "C"])
    vec = rt.vector({"A": 2, "C": 1})
    assert np.array_equal(vec, [2, 0, 1]), f"Unexpected vector {vec}"
    assert rt.to_dict(vec) == {"A": 2, "B": 0, "C": 1}
    assert rt.format(vec) == "{A:2, B:0, C:1}"
    assert rt.names_of(vec) == ["A", "C"]
    print(f"  ✓ {rt.format(vec)}")

    with pytest.raises(KeyError):
        rt.vector({"Z": 1})
    with pytest.raises(KeyError):
        rt.vector({"A": 1}, require_all=True)
    with pytest.raises(ValueError, match="integer"):
        rt.vector({"A": 1.9})
    with pytest.raises(ValueError, match="integer"):
        rt.vector({"B": False})
    with pytest.raises(ValueError):
        ResourceTypes(["A", "A"])
    with pytest.raises(ValueError):
        ResourceTypes([])
    print("  ✓ Unknown, missing and duplicate types rejected")

    assert ResourceTypes(["A", "B"]) == ResourceTypes(["A", "B"])
    assert ResourceTypes(["A", "B"]) != ResourceTypes(["B", "A"])


def test_ledger_construction_and_validation():
    """Test ledger invariant allocation + need == max_demand."""
    rt = ResourceTypes(["A", "B"])
    ledger = ResourceLedger.from_mappings(rt, {"A": 7, "B": 5}, {"B": 1})

    assert np.array_equal(ledger.allocation, [0, 1])
    assert np.array_equal(ledger.need, [7, 4])
    assert ledger.is_consistent()
    assert ledger.status == LedgerStatus.UNCONSTRAINED

    # max_demand must name every type
    with pytest.raises(KeyError):
        ResourceLedger.from_mappings(rt, {"A": 7})
    # allocation above max_demand
    with pytest.raises(LedgerInconsistencyError):
        ResourceLedger.from_mappings(rt, {"A": 1, "B": 1}, {"A": 2})

    ledger.need[0] += 1
    assert not ledger.is_consistent()
    with pytest.raises(LedgerInconsistencyError) as exc:
        ledger.validate("in test")
    assert "A: 0 + 8 != 7" in str(exc.value)
    print("  ✓ Ledger invariant enforced")


def test_ledger_grant_release_cycle():
    """Test Unconstrained -> Waiting -> Granted -> Finished."""
    rt = ResourceTypes(["A", "B"])
    ledger = ResourceLedger.from_mappings(rt, {"A": 2, "B": 1})

    ledger.waiting_for.add("A")
    assert ledger.status == LedgerStatus.WAITING

    entry = ledger.record_request(np.array([1, 0]), timestamp=3)
    ledger.grant(np.array([1, 0]))
    entry.granted = True
    assert not ledger.waiting_for, "Grant should clear the waiting set"
    assert ledger.status == LedgerStatus.GRANTED
    assert np.array_equal(ledger.need, [1, 1])

    ledger.grant(np.array([1, 1]))
    assert ledger.status == LedgerStatus.FINISHED

    held = ledger.release_all()
    assert np.array_equal(held, [2, 1])
    assert np.array_equal(ledger.allocation, [0, 0])
    assert np.array_equal(ledger.need, [2, 1])
    assert entry.completed, "Release should complete granted history entries"
    ledger.validate()


def test_ledger_snapshot_restore():
    rt = ResourceTypes(["A"])
    ledger = ResourceLedger.from_mappings(rt, {"A": 4}, {"A": 1})
    snap = ledger.snapshot()

    ledger.grant(np.array([2]))
    ledger.waiting_for.add("A")
    ledger.restore(snap)

    assert np.array_equal(ledger.allocation, [1])
    assert np.array_equal(ledger.need, [3])
    assert ledger.waiting_for == set()


def test_hold_time_accrues_for_held_types():
    rt = ResourceTypes(["A", "B"])
    ledger = ResourceLedger.from_mappings(rt, {"A": 2, "B": 2}, {"A": 1})
    ledger.accrue_hold_time(10)
    ledger.accrue_hold_time(5)
    assert np.array_equal(ledger.hold_time, [15, 0])


def test_consume_time_bounds():
    """Test that execution is bounded by slice and need."""
    print("\n" + "="*60)
    print("TEST: SchedulingInfo.consume_time")
    print("="*60)

    info = SchedulingInfo(total_need_time=25, time_slice=10)
    info.reset_time_slice()

    used = info.consume_time(15)
    assert used == 10, "Bounded by the slice"
    assert info.remaining_need_time == 15
    assert info.time_slice_remaining == 0
    assert info.time_slice_expired

    info.reset_time_slice()
    info.consume_time(10)
    info.reset_time_slice()

    # Overshoot: only the 5 units of need left are charged
    used = info.consume_time(10)
    assert used == 5
    assert info.remaining_need_time == 0
    assert info.time_slice_remaining == 5, "Overshoot credited back to the slice"
    assert not info.time_slice_expired
    assert info.total_cpu_time == 25

    assert info.consume_time(10) == 0
    assert info.remaining_need_time == 0, "Need never goes negative"
    print("  ✓ Slice and need bounds hold")


def test_scheduling_info_rejects_bad_values():
    with pytest.raises(ValueError):
        SchedulingInfo(total_need_time=-1)
    with pytest.raises(ValueError):
        SchedulingInfo(time_slice=0)


def test_burst_smoothing_and_interactivity():
    info = SchedulingInfo()

    info.update_average_burst(10)
    assert info.average_cpu_burst == 10.0, "First burst seeds the average"
    assert info.interactive_score == 0.5

    info.update_average_burst(20)
    assert info.average_cpu_burst == pytest.approx(13.0)

    info.update_average_burst(5)
    assert info.interactive_score == 0.9

    info.update_average_burst(150)
    assert info.interactive_score == 0.1


def test_dynamic_priority():
    """Lower score is more urgent."""
    info = SchedulingInfo(static_priority=PriorityLevel.NORMAL)
    assert info.calculate_dynamic_priority() == 20

    info.static_priority = PriorityLevel.HIGH
    info.interactive_score = 0.9
    assert info.calculate_dynamic_priority() == 6

    # CPU-bound penalty
    info.average_cpu_burst = 150.0
    assert info.calculate_dynamic_priority() == 8

    # Bonus for waiting in a lower queue
    info.queue_level = 1
    info.time_in_queue = 1500
    assert info.calculate_dynamic_priority() == 7

    # Clamped at 0
    rt_info = SchedulingInfo(static_priority=PriorityLevel.REAL_TIME, interactive_score=0.9)
    assert rt_info.calculate_dynamic_priority() == 0


def test_should_preempt():
    info = SchedulingInfo(time_slice=10)
    info.reset_time_slice()

    assert info.should_preempt(0, higher_priority_waiting=True, time_sliced=False)
    assert not info.should_preempt(0, higher_priority_waiting=False, time_sliced=True)

    info.time_slice_expired = True
    assert info.should_preempt(0, False, time_sliced=True)
    assert not info.should_preempt(0, False, time_sliced=False)

    info.preemptable = False
    info.time_slice_expired = False
    assert not info.should_preempt(0, True, time_sliced=False)


def test_process_descriptor():
    """Test descriptor creation and queue-level moves."""
    print("\n" + "="*60)
    print("TEST: ProcessDescriptor")
    print("="*60)

    proc = ProcessDescriptor.create(
        7, "worker", priority=PriorityLevel.LOW, total_need_time=50,
        time_slice=10, policy=SchedulingPolicy.MLFQ, queue_level=1
    )
    print(f"\nCreated: {proc}")

    assert proc.state == ProcessState.NEW
    assert proc.scheduling.time_slice_remaining == 10, "Slice starts full"
    assert proc.scheduling.dynamic_priority == 30
    assert proc.needs_execution()

    with pytest.raises(AttributeError):
        proc.pid = 8
    assert proc.pid == 7

    assert proc.demote_priority(lowest_level=2)
    assert proc.scheduling.queue_level == 2
    assert proc.scheduling.time_slice == 15

    # Bottom level: no further demotion, slice unchanged
    assert not proc.demote_priority(lowest_level=2)
    assert proc.scheduling.time_slice == 15

    assert proc.boost_priority()
    assert proc.scheduling.queue_level == 1
    assert proc.boost_priority()
    assert not proc.boost_priority()
    assert proc.scheduling.queue_level == 0
    print("  ✓ Demotion and promotion bounded")

    used = proc.update_scheduling_stats(current_time=100, execution_time=10)
    assert used == 10
    assert proc.time_used == 10
    assert proc.scheduling.last_scheduled_time == 100


def test_default_name_and_policy_flags():
    proc = ProcessDescriptor(pid=3)
    assert proc.name == "Process-3"
    assert SchedulingPolicy.RR.time_sliced
    assert SchedulingPolicy.MLFQ.time_sliced
    assert not SchedulingPolicy.FCFS.time_sliced
    assert not SchedulingPolicy.HRRN.time_sliced
    assert PriorityLevel.from_value(3) == PriorityLevel.LOW
    assert PriorityLevel.from_value(42) == PriorityLevel.NORMAL
