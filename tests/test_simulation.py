"""
Simulation Driver Tests

Runs the bundled scenarios end to end in both modes.
"""

import sys
from pathlib import Path

import numpy as np

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from models.process import PriorityLevel, ProcessState
from utils.logger import SimulatorLogger
from utils.scenario_loader import load_scenario
from analysis.events import EventLog, EventType
from analysis.metrics import format_metrics_report
from simulator import run_banker_simulation, run_scheduler_simulation, run_simulation

SCENARIOS = project_root / "scenarios"


def quiet_logger():
    return SimulatorLogger(echo=False)


def test_round_robin_simulation():
    """Three RR processes run to completion in ten rounds."""
    print("\n" + "="*60)
    print("TEST: Scheduler mode")
    print("="*60)

    scenario = load_scenario(str(SCENARIOS / "round_robin.json"))
    scheduler, metrics = run_scheduler_simulation(scenario, quiet_logger())

    assert [p.pid for p in scheduler.finished] == [1, 2, 3]
    assert metrics.total_rounds == 10, "Stops once nothing is left to run"
    assert metrics.elapsed_time == 100
    assert metrics.context_switches == 9
    assert metrics.completed_processes == 3
    assert metrics.process_turnaround_times == {1: 70, 2: 80, 3: 90}
    assert metrics.get_avg_waiting_time() == 50

    report = format_metrics_report(metrics)
    assert "SCHEDULER MODE" in report
    print(report)


def test_round_robin_three_rounds_override():
    scenario = load_scenario(str(SCENARIOS / "round_robin.json"))
    scheduler, metrics = run_scheduler_simulation(scenario, quiet_logger(), rounds=3)

    assert metrics.total_rounds == 3
    assert all(p.time_used == 10 for p in scenario.processes)
    assert not scheduler.finished


def test_mlfq_mixed_simulation():
    scenario = load_scenario(str(SCENARIOS / "mlfq_mixed.json"))
    event_log = EventLog()
    scheduler, metrics = run_scheduler_simulation(scenario, quiet_logger(), event_log=event_log)

    assert scenario.get_process(1).scheduling.static_priority == PriorityLevel.HIGH
    assert set(metrics.process_final_states) == {1, 2, 3, 4}
    backup = scenario.events_by_round[8][0]["process"]
    assert backup.state == ProcessState.TERMINATED
    assert event_log.count(EventType.DEMOTE) > 0
    assert event_log.count(EventType.PRIORITY_CHANGE) == 1

    queued = [pid for level in scheduler.queue_snapshot() for pid in level]
    assert len(queued) == len(set(queued))


def test_bankers_basic_simulation():
    """Grant, need rejection, admission, release and removal over six rounds."""
    print("\n" + "="*60)
    print("TEST: Banker mode")
    print("="*60)

    scenario = load_scenario(str(SCENARIOS / "bankers_basic.json"))
    authority, metrics = run_banker_simulation(scenario, quiet_logger())

    assert metrics.process_granted_counts == {2: 1, 1: 1}
    assert metrics.process_denied_counts == {1: 1}
    assert metrics.completed_processes == 1
    assert metrics.deadlock_count == 0
    assert metrics.unsafe_rounds == 0
    assert len(metrics.utilization_samples) == 6

    assert authority.available == {"A": 10, "B": 4}
    assert [p.pid for p in authority.processes] == [1, 3]
    assert scenario.get_process(2).state == ProcessState.TERMINATED
    for p in authority.processes:
        assert p.ledger.is_consistent()

    report = format_metrics_report(metrics, verbose=True)
    assert "Requests Granted: 2" in report
    print(report)


def test_bankers_unsafe_simulation():
    scenario = load_scenario(str(SCENARIOS / "bankers_unsafe.json"))
    authority, metrics = run_banker_simulation(scenario, quiet_logger())

    assert metrics.process_granted_counts == {1: 1}
    assert metrics.process_denied_counts == {4: 1, 0: 1}
    assert metrics.unsafe_rounds == 0
    assert authority.get_process(0).state == ProcessState.BLOCKED
    assert authority.get_process(4).ledger.waiting_for == {"A", "B"}
    assert np.array_equal(authority.available_vector, [3, 3, 2])


def test_deadlock_scenario():
    scenario = load_scenario(str(SCENARIOS / "deadlock_recovery.json"))
    event_log = EventLog()
    authority, metrics = run_banker_simulation(scenario, quiet_logger(), event_log=event_log)

    assert metrics.deadlock_count == 1
    assert metrics.unsafe_rounds == 1
    assert [e.step for e in event_log.get_events_by_type(EventType.DEADLOCK)] == [1]

    p1 = authority.get_process(1)
    assert p1.ledger.is_finished()
    assert not p1.ledger.deadlock_detected
    assert authority.available == {"R1": 0, "R2": 0}


def test_run_simulation_exit_codes(tmp_path):
    log_file = tmp_path / "run.log"
    code = run_simulation("banker", str(SCENARIOS / "bankers_basic.json"),
                          log_file=str(log_file), snapshot=True)
    assert code == 0
    text = log_file.read_text(encoding="utf-8")
    assert "SIMULATION COMPLETE" in text
    assert "SYSTEM STATE" in text

    assert run_simulation("scheduler", str(tmp_path / "missing.json")) == 1
    # Banker mode needs resources
    assert run_simulation("banker", str(SCENARIOS / "round_robin.json")) == 1
