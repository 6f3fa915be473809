"""
Metrics Tracking for the Resource Control Simulator.

Tracks performance metrics throughout simulation execution.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
import statistics

from models.process import ProcessDescriptor


@dataclass
class SimulationMetrics:
    """
    Accumulated metrics for a single simulation run.

    Scheduler mode:
    1. CPU time, waiting time and turnaround per process
    2. Context switch count
    3. Throughput: terminated processes / simulated time

    Banker mode:
    1. Grants and denials per process
    2. Deadlock and unsafe-round counts
    3. Resource Utilization %: Average (allocated/total) × 100 per round
    """
    mode: str = "scheduler"
    total_rounds: int = 0
    total_processes: int = 0
    completed_processes: int = 0

    # Scheduler
    elapsed_time: int = 0
    context_switches: int = 0
    process_admit_times: Dict[int, int] = field(default_factory=dict)
    process_cpu_times: Dict[int, int] = field(default_factory=dict)
    process_waiting_times: Dict[int, int] = field(default_factory=dict)
    process_turnaround_times: Dict[int, int] = field(default_factory=dict)

    # Banker
    deadlock_count: int = 0
    unsafe_rounds: int = 0
    utilization_samples: List[float] = field(default_factory=list)
    resource_utilization_samples: Dict[str, List[float]] = field(default_factory=dict)
    process_granted_counts: Dict[int, int] = field(default_factory=dict)
    process_denied_counts: Dict[int, int] = field(default_factory=dict)

    process_final_states: Dict[int, str] = field(default_factory=dict)

    def record_round(
        self,
        round_number: int,
        allocated: Optional[Sequence[int]] = None,
        total: Optional[Sequence[int]] = None,
        names: Optional[Sequence[str]] = None
    ) -> None:
        """
        Record metrics for a single simulation round.

        Args:
            round_number: Current round number
            allocated: Allocated instances per resource type (banker mode)
            total: Total instances per resource type (banker mode)
            names: Resource type names, in vector order
        """
        self.total_rounds = round_number
        if allocated is None or total is None:
            return

        total_instances = int(sum(total))
        if total_instances > 0:
            self.utilization_samples.append(int(sum(allocated)) / total_instances * 100)

        for i, name in enumerate(names or []):
            samples = self.resource_utilization_samples.setdefault(name, [])
            if total[i] > 0:
                samples.append(int(allocated[i]) / int(total[i]) * 100)

    def record_deadlock(self) -> None:
        """Record a deadlock occurrence."""
        self.deadlock_count += 1

    def record_unsafe(self) -> None:
        """Record a round that ended in an unsafe state."""
        self.unsafe_rounds += 1

    def record_allocation(self, process_id: int) -> None:
        self.process_granted_counts[process_id] = self.process_granted_counts.get(process_id, 0) + 1

    def record_denial(self, process_id: int) -> None:
        self.process_denied_counts[process_id] = self.process_denied_counts.get(process_id, 0) + 1

    def record_admission(self, process_id: int, time: int) -> None:
        """Record when a process entered the scheduler."""
        self.process_admit_times.setdefault(process_id, time)
        self.total_processes = len(self.process_admit_times)

    def record_process(self, process: ProcessDescriptor) -> None:
        """
        Record the final scheduling numbers of a process.

        Turnaround is only known for processes that terminated.
        """
        info = process.scheduling
        self.process_cpu_times[process.pid] = info.total_cpu_time
        self.process_waiting_times[process.pid] = info.total_wait_time
        self.process_final_states[process.pid] = process.state.value
        if process.is_terminated() and info.completion_time is not None:
            admitted = self.process_admit_times.get(process.pid, 0)
            self.process_turnaround_times[process.pid] = info.completion_time - admitted

    def record_process_final_state(self, process_id: int, state: str) -> None:
        self.process_final_states[process_id] = state

    def set_total_processes(self, count: int) -> None:
        self.total_processes = count

    def get_avg_utilization(self) -> float:
        """Calculate average resource utilization (overall, includes initial allocations)."""
        if not self.utilization_samples:
            return 0.0
        return statistics.mean(self.utilization_samples)

    def get_resource_utilization(self, name: str) -> float:
        """
        Calculate average utilization for a specific resource.

        Args:
            name: Resource type name

        Returns:
            Average utilization percentage for this resource
        """
        samples = self.resource_utilization_samples.get(name)
        if not samples:
            return 0.0
        return statistics.mean(samples)

    def get_avg_waiting_time(self) -> float:
        """Average ready-queue time across recorded processes."""
        if not self.process_waiting_times:
            return 0.0
        return statistics.mean(self.process_waiting_times.values())

    def get_avg_turnaround_time(self) -> float:
        """Average admission-to-termination time of terminated processes."""
        if not self.process_turnaround_times:
            return 0.0
        return statistics.mean(self.process_turnaround_times.values())

    def get_throughput(self) -> float:
        """
        Calculate throughput.

        Scheduler mode: terminated processes per simulated time unit.
        Banker mode: processes completed (removed) per round.
        """
        denominator = self.elapsed_time if self.mode == "scheduler" else self.total_rounds
        if denominator == 0:
            return 0.0
        return self.completed_processes / denominator

    def get_deadlock_frequency(self) -> float:
        """Get deadlock frequency (deadlocks / total rounds)."""
        if self.total_rounds == 0:
            return 0.0
        return self.deadlock_count / self.total_rounds


def format_metrics_report(
    metrics: SimulationMetrics,
    verbose: bool = False,
    scenario: str = None
) -> str:
    """
    Format metrics for display at end of simulation.

    Args:
        metrics: SimulationMetrics instance with collected data
        verbose: If True, include metric formulas
        scenario: Scenario file path

    Returns:
        Formatted metrics report string
    """
    lines = []
    lines.append("\n" + "="*60)
    lines.append(f"SIMULATION METRICS ({metrics.mode.upper()} MODE)")
    lines.append("="*60)

    if scenario:
        lines.append(f"Scenario: {scenario}")
        lines.append("")

    lines.append(f"Total Rounds: {metrics.total_rounds}")
    lines.append(f"Total Processes: {metrics.total_processes}")
    lines.append(f"Completed Processes: {metrics.completed_processes}")
    lines.append("")

    lines.append("KEY PERFORMANCE METRICS:")
    lines.append("-" * 60)
    if metrics.mode == "scheduler":
        lines.append(f"1. Simulated Time: {metrics.elapsed_time}")
        lines.append(f"2. Context Switches: {metrics.context_switches}")
        lines.append(f"3. Average Waiting Time: {metrics.get_avg_waiting_time():.2f} time units/process")
        lines.append(f"4. Average Turnaround Time: {metrics.get_avg_turnaround_time():.2f} time units")
        lines.append(f"5. Throughput: {metrics.get_throughput():.4f} processes/time unit")
    else:
        granted = sum(metrics.process_granted_counts.values())
        denied = sum(metrics.process_denied_counts.values())
        lines.append(f"1. Requests Granted: {granted}")
        lines.append(f"2. Requests Denied: {denied}")
        lines.append(f"3. Deadlock Count: {metrics.deadlock_count}")
        lines.append(f"4. Unsafe Rounds: {metrics.unsafe_rounds}")
        lines.append(f"5. Average Resource Utilization: {metrics.get_avg_utilization():.2f}%")

        if metrics.resource_utilization_samples:
            lines.append("")
            lines.append("PER-RESOURCE UTILIZATION:")
            lines.append("-" * 60)
            for name in metrics.resource_utilization_samples:
                lines.append(f"  {name}: {metrics.get_resource_utilization(name):.2f}% average")

    if metrics.process_final_states:
        lines.append("")
        lines.append("PER-PROCESS SUMMARY:")
        lines.append("-" * 60)
        for pid in sorted(metrics.process_final_states):
            state = metrics.process_final_states[pid]
            if metrics.mode == "scheduler":
                cpu = metrics.process_cpu_times.get(pid, 0)
                wait = metrics.process_waiting_times.get(pid, 0)
                turnaround = metrics.process_turnaround_times.get(pid)
                ta_str = str(turnaround) if turnaround is not None else "-"
                lines.append(f"  P{pid}: {state:10} | cpu={cpu:5} | wait={wait:5} | turnaround={ta_str}")
            else:
                granted = metrics.process_granted_counts.get(pid, 0)
                denied = metrics.process_denied_counts.get(pid, 0)
                lines.append(f"  P{pid}: {state:10} | grant={granted:2} deny={denied:2}")

    if verbose:
        lines.append("")
        lines.append("METRIC FORMULAS:")
        lines.append("-" * 60)
        if metrics.mode == "scheduler":
            lines.append("Waiting Time: time spent in ready queues")
            lines.append("Turnaround: completion time - admission time")
            lines.append("Throughput: (# terminated processes) / (simulated time)")
        else:
            lines.append("Resource Utilization: Average of (SUM allocated / SUM total) x 100 per round")
            lines.append("Unsafe Rounds: rounds whose closing safety check failed")

    lines.append("="*60)
    return "\n".join(lines)
