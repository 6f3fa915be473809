#!/usr/bin/env python3
"""
Resource Control Simulator
Main entry point for the simulation system.

Runs a scenario either through the multi-level CPU scheduler or through the
Banker's-algorithm allocation authority.
"""

import argparse
import sys
from typing import Any, Dict, List, Optional, Tuple

from models.process import ProcessDescriptor, ProcessState
from utils.scenario_loader import Scenario, load_scenario, ScenarioLoadError
from utils.logger import SimulatorLogger
from algorithms.scheduler import Scheduler
from algorithms.avoidance import AllocationAuthority
from algorithms.detection import should_run_detection
from analysis.events import EventLog
from analysis.metrics import SimulationMetrics, format_metrics_report


MODES = ('scheduler', 'banker')


def run_scheduler_simulation(
    scenario: Scenario,
    logger: SimulatorLogger,
    rounds: Optional[int] = None,
    event_log: Optional[EventLog] = None
) -> Tuple[Scheduler, SimulationMetrics]:
    """
    Run a scenario through the CPU scheduler.

    Step Ordering (for deterministic execution):
    1. Admit READY and RUNNING processes before round 1
    2. Each round: apply ADD_PROCESS / REMOVE_PROCESS / CHANGE_PRIORITY
       events in file order, then tick once with time_speed

    Args:
        scenario: Loaded scenario
        logger: Logger instance
        rounds: Overrides simulation.total_rounds
        event_log: Event log the scheduler writes to

    Returns:
        Tuple of (scheduler, metrics)
    """
    settings = scenario.settings
    scheduler = Scheduler(
        queue_levels=settings.queue_levels,
        starvation_threshold=settings.starvation_threshold,
        time_speed=settings.time_speed,
        logger=logger,
        event_log=event_log,
    )
    metrics = SimulationMetrics(mode="scheduler")
    seen: List[ProcessDescriptor] = []

    for process in scenario.processes:
        if process.state in (ProcessState.READY, ProcessState.RUNNING):
            scheduler.admit(process)
            metrics.record_admission(process.pid, scheduler.system_time)
            seen.append(process)

    total_rounds = settings.total_rounds if rounds is None else rounds
    last_event_round = max(scenario.events_by_round, default=0)

    for round_number in range(1, total_rounds + 1):
        logger.log(f"\n{'-'*60}")
        logger.log(f"Round {round_number} (time {scheduler.system_time})")
        logger.log(f"{'-'*60}")

        for event in scenario.events_by_round.get(round_number, []):
            _apply_scheduler_event(event, scenario, scheduler, logger, metrics, seen)

        scheduler.tick()
        metrics.record_round(round_number)

        if logger.verbose:
            for line in scheduler.status_lines():
                logger.log(line, "debug")

        if not scheduler.has_work() and round_number >= last_event_round:
            logger.log(f"\nAll processes finished at round {round_number}")
            break

    metrics.elapsed_time = scheduler.system_time
    metrics.context_switches = scheduler.context_switches
    metrics.completed_processes = len(scheduler.finished)
    for process in seen:
        metrics.record_process(process)
    return scheduler, metrics


def _apply_scheduler_event(
    event: Dict[str, Any],
    scenario: Scenario,
    scheduler: Scheduler,
    logger: SimulatorLogger,
    metrics: SimulationMetrics,
    seen: List[ProcessDescriptor]
) -> None:
    action = event['action']
    pid = event['process_id']

    if action == "ADD_PROCESS":
        process = event.get('process') or scenario.get_process(pid)
        if scheduler.get_process(pid) is not None:
            logger.log(f"Process P{pid} is already scheduled", "warning")
            return
        scheduler.admit(process)
        metrics.record_admission(pid, scheduler.system_time)
        if process not in seen:
            seen.append(process)
    elif action == "REMOVE_PROCESS":
        scheduler.terminate(pid)
    elif action == "CHANGE_PRIORITY":
        scheduler.change_priority(pid, event['priority'])
    else:
        logger.log(f"{action} event for P{pid} ignored in scheduler mode", "debug")


def run_banker_simulation(
    scenario: Scenario,
    logger: SimulatorLogger,
    rounds: Optional[int] = None,
    event_log: Optional[EventLog] = None
) -> Tuple[AllocationAuthority, SimulationMetrics]:
    """
    Run a scenario through the Banker's-algorithm authority.

    Step Ordering (for deterministic execution):
    1. Apply REQUEST / RELEASE / ADD_PROCESS / REMOVE_PROCESS events in file order
    2. Run deadlock detection (if enabled, every detect_interval rounds)
    3. Run the safety check (if enabled)

    Args:
        scenario: Loaded scenario
        logger: Logger instance
        rounds: Overrides simulation.total_rounds
        event_log: Event log the authority writes to

    Returns:
        Tuple of (authority, metrics)

    Raises:
        ScenarioLoadError: If the scenario declares no resources
    """
    if scenario.resource_types is None:
        raise ScenarioLoadError("Banker mode needs a 'resources' block")

    settings = scenario.settings
    rt = scenario.resource_types
    authority = AllocationAuthority(rt, logger=logger, event_log=event_log)
    metrics = SimulationMetrics(mode="banker")

    live = []
    for process in scenario.initial_processes():
        if process.ledger is None:
            logger.log(f"{process.name} declares no resources; left out of banker mode", "warning")
            continue
        live.append(process)
    authority.initialize(scenario.available, live)
    metrics.set_total_processes(len(live))

    if settings.enable_safety_check:
        authority.is_safe_state()

    total_rounds = settings.total_rounds if rounds is None else rounds
    for round_number in range(1, total_rounds + 1):
        authority.current_step = round_number
        logger.log(f"\n{'-'*60}")
        logger.log(f"Round {round_number}")
        logger.log(f"{'-'*60}")

        for event in scenario.events_by_round.get(round_number, []):
            _apply_banker_event(event, scenario, authority, logger, metrics)

        if settings.enable_deadlock_detection and should_run_detection(round_number, settings.detect_interval):
            if authority.detect_deadlock():
                metrics.record_deadlock()

        if settings.enable_safety_check and not authority.is_safe_state():
            logger.log_step(round_number, "System is in an UNSAFE state", "warning")
            metrics.record_unsafe()

        total = authority.total_resources()
        metrics.record_round(round_number, total - authority.available_vector, total, rt.names)

        if logger.verbose:
            logger.log_system_state(round_number, authority.snapshot().display())

    for process in authority.processes:
        metrics.record_process_final_state(process.pid, process.state.value)
    return authority, metrics


def _apply_banker_event(
    event: Dict[str, Any],
    scenario: Scenario,
    authority: AllocationAuthority,
    logger: SimulatorLogger,
    metrics: SimulationMetrics
) -> None:
    action = event['action']
    pid = event['process_id']

    if action in ("REQUEST", "RELEASE"):
        process = authority.get_process(pid)
        if process is None:
            logger.log_step(authority.current_step, f"Process P{pid} not in the system, {action} skipped", "warning")
            return
        if action == "REQUEST":
            if authority.request_resources(process, event['resources']):
                metrics.record_allocation(pid)
            else:
                metrics.record_denial(pid)
        else:
            authority.release_resources(process, event['resources'])
    elif action == "ADD_PROCESS":
        process = event.get('process') or scenario.get_process(pid)
        if process.ledger is None:
            logger.log_step(authority.current_step, f"{process.name} declares no resources, not added", "warning")
            return
        if authority.add_process(process):
            metrics.set_total_processes(metrics.total_processes + 1)
    elif action == "REMOVE_PROCESS":
        process = authority.get_process(pid)
        if authority.remove_process(pid):
            metrics.completed_processes += 1
            metrics.record_process_final_state(pid, process.state.value)
    else:
        logger.log(f"{action} event for P{pid} ignored in banker mode", "debug")


def run_simulation(
    mode: str,
    scenario_path: str,
    rounds: Optional[int] = None,
    verbose: bool = False,
    log_file: Optional[str] = None,
    snapshot: bool = False,
    show_events: bool = False
) -> int:
    """
    Load a scenario and run it in the given mode.

    Returns:
        Process exit code (1 on scenario load failure)
    """
    logger = SimulatorLogger(verbose=verbose, log_file=log_file)
    event_log = EventLog()

    try:
        scenario = load_scenario(scenario_path)
    except ScenarioLoadError as e:
        logger.log(f"Failed to load scenario: {e}", "error")
        logger.close()
        return 1

    logger.log(f"\n{'='*60}")
    logger.log(f"SIMULATION START: {mode.upper()} MODE")
    logger.log(f"Scenario: {scenario_path}")
    if scenario.description:
        logger.log(scenario.description)
    logger.log(f"{'='*60}\n")

    try:
        if mode == 'scheduler':
            scheduler, metrics = run_scheduler_simulation(scenario, logger, rounds, event_log)
            final_state = "\n".join(scheduler.status_lines())
        else:
            authority, metrics = run_banker_simulation(scenario, logger, rounds, event_log)
            final_state = authority.snapshot().display()
    except ScenarioLoadError as e:
        logger.log(f"Failed to run scenario: {e}", "error")
        logger.close()
        return 1

    logger.log(f"\n{'='*60}")
    logger.log("SIMULATION COMPLETE")
    logger.log(f"{'='*60}\n")

    if snapshot:
        logger.log(final_state)
    if show_events:
        logger.log("\nEvent Log:")
        logger.log(event_log.display())
    logger.log(format_metrics_report(metrics, verbose=verbose, scenario=scenario_path))

    logger.close()
    return 0


def main():
    """Main entry point for the simulator."""
    parser = argparse.ArgumentParser(
        description='Resource Control Simulator (CPU scheduling and Banker\'s algorithm)'
    )
    parser.add_argument(
        '--mode',
        choices=MODES,
        required=True,
        help='Engine to run the scenario through'
    )
    parser.add_argument(
        '--scenario',
        type=str,
        required=True,
        help='Path to scenario JSON file'
    )
    parser.add_argument(
        '--rounds',
        type=int,
        default=None,
        help='Number of rounds to run (default: simulation.total_rounds)'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )
    parser.add_argument(
        '--log-file',
        type=str,
        default=None,
        help='Also write the log to this file'
    )
    parser.add_argument(
        '--snapshot',
        action='store_true',
        help='Print the final engine state'
    )
    parser.add_argument(
        '--events',
        action='store_true',
        help='Print the structured event log'
    )

    args = parser.parse_args()

    if args.rounds is not None and args.rounds < 0:
        parser.error('--rounds must be non-negative')

    return run_simulation(
        args.mode,
        args.scenario,
        rounds=args.rounds,
        verbose=args.verbose,
        log_file=args.log_file,
        snapshot=args.snapshot,
        show_events=args.events,
    )


if __name__ == '__main__':
    sys.exit(main())
