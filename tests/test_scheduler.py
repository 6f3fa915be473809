"""
Scheduler Tests

Tests selection policies, context switching, preemption, MLFQ demotion
and anti-starvation promotion of the multi-level scheduler.
"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from models.process import (
    PriorityLevel,
    ProcessDescriptor,
    ProcessState,
    SchedulingPolicy,
)
from algorithms.policies import (
    HighestResponseRatioStrategy,
    RoundRobinStrategy,
    new_ready_queue,
    strategy_for,
)
from algorithms.scheduler import Scheduler
from analysis.events import EventLog, EventType
from utils.logger import SimulatorLogger


def make_process(pid, need=30, slice_=10, policy=SchedulingPolicy.RR,
                 priority=PriorityLevel.NORMAL, preemptable=True, level=0):
    return ProcessDescriptor.create(
        pid, f"P{pid}", priority=priority, total_need_time=need, time_slice=slice_,
        preemptable=preemptable, policy=policy, queue_level=level
    )


def assert_queue_invariants(scheduler):
    """A process is in at most one queue and never both running and queued."""
    queued = [pid for level in scheduler.queue_snapshot() for pid in level]
    assert len(queued) == len(set(queued)), f"Process queued twice: {scheduler.queue_snapshot()}"
    if scheduler.current is not None:
        assert scheduler.current.pid not in queued, "Running process is also queued"
        assert scheduler.current.state == ProcessState.RUNNING
    for process in scheduler.ready_processes():
        assert process.state == ProcessState.READY


def test_round_robin_three_processes():
    """Three RR processes, need 30, slice 10: after 3 ticks each ran once."""
    print("\n" + "="*60)
    print("TEST: Round Robin")
    print("="*60)

    scheduler = Scheduler()
    procs = [make_process(pid) for pid in (1, 2, 3)]
    for p in procs:
        scheduler.admit(p)

    order = []
    for _ in range(3):
        running = scheduler.tick(10)
        order.append(running.pid)
        assert_queue_invariants(scheduler)

    print(f"  Dispatch order: {order}")
    assert order == [1, 2, 3]
    for p in procs:
        assert p.time_used == 10, f"{p.name} ran {p.time_used}"
        assert p.scheduling.remaining_need_time == 20
        assert p.state in (ProcessState.READY, ProcessState.RUNNING)
    assert not scheduler.finished
    assert scheduler.system_time == 30
    print("  ✓ Each process executed exactly once")


def test_round_robin_runs_to_completion():
    scheduler = Scheduler()
    procs = [make_process(pid) for pid in (1, 2, 3)]
    for p in procs:
        scheduler.admit(p)

    ticks = 0
    while scheduler.has_work():
        scheduler.tick(10)
        assert_queue_invariants(scheduler)
        ticks += 1
        assert ticks < 50, "Scheduler did not converge"

    assert [p.pid for p in scheduler.finished] == [1, 2, 3]
    assert all(p.state == ProcessState.TERMINATED for p in procs)
    assert [p.scheduling.completion_time for p in procs] == [70, 80, 90]
    assert [p.scheduling.total_wait_time for p in procs] == [40, 50, 60]
    assert scheduler.context_switches == 9


def test_fcfs_keeps_cpu_until_done():
    scheduler = Scheduler()
    first = make_process(1, need=30, slice_=10, policy=SchedulingPolicy.FCFS)
    second = make_process(2, need=10, slice_=10, policy=SchedulingPolicy.FCFS)
    scheduler.admit(first)
    scheduler.admit(second)

    pids = [scheduler.tick(10).pid for _ in range(3)]
    assert pids == [1, 1, 1], "FCFS process keeps the CPU across slice expiry"
    assert scheduler.tick(10).pid == 2, "Terminated head releases the CPU"
    assert first.is_terminated()


def test_sjf_picks_shortest_remaining():
    scheduler = Scheduler()
    for pid, need in ((1, 50), (2, 20), (3, 30)):
        scheduler.admit(make_process(pid, need=need, slice_=100, policy=SchedulingPolicy.SJF))

    assert scheduler.tick(10).pid == 2


def test_priority_preemption():
    """A strictly more urgent arrival preempts a preemptable process."""
    scheduler = Scheduler()
    low = make_process(1, need=100, slice_=50, policy=SchedulingPolicy.PRIORITY,
                       priority=PriorityLevel.LOW)
    scheduler.admit(low)
    assert scheduler.tick(10) is low

    high = make_process(2, need=100, slice_=50, policy=SchedulingPolicy.PRIORITY,
                        priority=PriorityLevel.HIGH)
    scheduler.admit(high)

    assert scheduler.tick(10) is high
    assert low.state == ProcessState.READY, "Preempted process goes back to a ready queue"
    assert scheduler.queue_snapshot()[0] == [1]
    assert scheduler.event_log.count(EventType.PREEMPT) == 1
    assert_queue_invariants(scheduler)


def test_non_preemptable_process_keeps_cpu():
    scheduler = Scheduler()
    low = make_process(1, need=100, slice_=50, policy=SchedulingPolicy.PRIORITY,
                       priority=PriorityLevel.LOW, preemptable=False)
    scheduler.admit(low)
    scheduler.tick(10)

    scheduler.admit(make_process(2, need=100, slice_=50, policy=SchedulingPolicy.PRIORITY,
                                 priority=PriorityLevel.HIGH))
    assert scheduler.tick(10) is low


def test_mlfq_demotion():
    """Slice expiry demotes one level with a 1.5x slice; the bottom level is sticky."""
    print("\n" + "="*60)
    print("TEST: MLFQ demotion")
    print("="*60)

    scheduler = Scheduler(queue_levels=3)
    proc = make_process(1, need=200, slice_=10, policy=SchedulingPolicy.MLFQ)
    scheduler.admit(proc)

    scheduler.tick(10)
    assert proc.scheduling.queue_level == 1
    assert proc.scheduling.time_slice == 15

    # Alone in the system: the yielding process is re-dispatched
    assert scheduler.tick(10) is proc
    assert proc.scheduling.time_slice_remaining == 5
    scheduler.tick(10)
    assert proc.scheduling.queue_level == 2
    assert proc.scheduling.time_slice == 22

    for _ in range(10):
        scheduler.tick(10)
        assert_queue_invariants(scheduler)
    assert proc.scheduling.queue_level == 2, "No demotion below the bottom level"
    assert proc.scheduling.time_slice == 22, "No slice lengthening at the bottom level"
    assert scheduler.event_log.count(EventType.DEMOTE) == 2
    print("  ✓ Demoted twice, then stayed at the bottom level")


def test_anti_starvation_promotion():
    """A process waiting past the threshold in a lower queue is promoted."""
    scheduler = Scheduler(queue_levels=3, starvation_threshold=50)
    hog = make_process(1, need=1000, slice_=100, policy=SchedulingPolicy.FCFS)
    starving = make_process(2, need=10, slice_=10, policy=SchedulingPolicy.FCFS,
                            priority=PriorityLevel.LOW, level=2)
    scheduler.admit(hog)
    scheduler.admit(starving)

    for _ in range(5):
        scheduler.tick(10)
    assert scheduler.queue_snapshot() == [[], [], [2]]
    assert starving.scheduling.time_in_queue == 50

    scheduler.tick(10)
    assert scheduler.queue_snapshot() == [[], [2], []], "Promoted within one tick of crossing the threshold"
    assert starving.scheduling.time_in_queue == 0

    for _ in range(6):
        scheduler.tick(10)
    assert scheduler.queue_snapshot() == [[2], [], []]
    assert scheduler.event_log.count(EventType.PROMOTE) == 2


def test_idle_tick_advances_clock():
    scheduler = Scheduler()
    assert scheduler.tick(25) is None
    assert scheduler.system_time == 25
    assert scheduler.event_log.count(EventType.IDLE) == 1


def test_admit_clamps_and_ignores_terminated():
    scheduler = Scheduler(queue_levels=3)
    deep = make_process(1, level=9)
    scheduler.admit(deep)
    assert deep.scheduling.queue_level == 2
    assert scheduler.queue_snapshot() == [[], [], [1]]

    # Admitting twice never duplicates
    scheduler.admit(deep)
    assert scheduler.queue_snapshot() == [[], [], [1]]

    gone = make_process(2)
    gone.state = ProcessState.TERMINATED
    scheduler.admit(gone)
    assert scheduler.get_process(2) is None
    assert_queue_invariants(scheduler)


def test_terminate_and_change_priority():
    logger = SimulatorLogger(echo=False)
    scheduler = Scheduler(logger=logger, event_log=EventLog())
    a, b = make_process(1), make_process(2)
    scheduler.admit(a)
    scheduler.admit(b)
    scheduler.tick(5)
    assert scheduler.current is a

    assert scheduler.change_priority(2, PriorityLevel.HIGH)
    assert b.scheduling.static_priority == PriorityLevel.HIGH
    assert b.scheduling.dynamic_priority == 10

    assert scheduler.terminate(1)
    assert scheduler.current is None
    assert a.is_terminated()
    assert a in scheduler.finished

    assert scheduler.terminate(2)
    assert scheduler.queue_snapshot()[0] == []
    assert not scheduler.has_work()

    assert not scheduler.terminate(99)
    assert not scheduler.change_priority(99, PriorityLevel.LOW)
    assert any("P99 not found" in m for m in logger.messages("warning"))


def test_round_robin_strategy_rotates_current():
    queue = new_ready_queue()
    a, b, c = make_process(1), make_process(2), make_process(3)
    queue.extend([a, b, c])

    chosen = RoundRobinStrategy().select(queue, a)
    assert chosen is b
    assert list(queue) == [b, c, a], "Selection rotates but never removes"


def test_hrrn_prefers_long_waiters():
    queue = new_ready_queue()
    long_job = make_process(1, need=100)
    short_job = make_process(2, need=10)
    long_job.scheduling.total_wait_time = 100
    short_job.scheduling.total_wait_time = 5
    queue.extend([short_job, long_job])

    assert HighestResponseRatioStrategy().select(queue, None) is long_job
    assert strategy_for(SchedulingPolicy.HRRN).select(new_ready_queue(), None) is None


def test_status_lines():
    scheduler = Scheduler()
    scheduler.admit(make_process(1))
    scheduler.admit(make_process(2))
    scheduler.tick(10)
    lines = scheduler.status_lines()
    assert lines[0] == "=== Scheduler Status at time 10 ==="
    assert "Current Process: P1" in lines[-1]


def test_completion_switch_names_finished_process():
    scheduler = Scheduler()
    first = make_process(1, need=10, slice_=10, policy=SchedulingPolicy.FCFS)
    second = make_process(2, need=10, slice_=10, policy=SchedulingPolicy.FCFS)
    scheduler.admit(first)
    scheduler.admit(second)

    scheduler.tick(10)
    assert scheduler.tick(10) is second
    assert scheduler.last_process is first
    assert first.is_terminated()
    assert_queue_invariants(scheduler)

    switches = [e.message for e in scheduler.event_log.get_events_by_type(EventType.CONTEXT_SWITCH)]
    assert switches == ["IDLE -> P1", "P1 -> P2"]

    # Last completion with nothing left: CPU goes idle without a switch
    assert scheduler.tick(10) is None
    assert scheduler.last_process is second
    assert scheduler.context_switches == 2
