"""
Scheduling bookkeeping for the Resource Control Simulator.

Holds the per-process numbers the scheduler reads and updates every tick.
"""

from dataclasses import dataclass, field
from enum import Enum


class PriorityLevel(Enum):
    """Static priority classes (lower value = more urgent)."""
    REAL_TIME = 0
    HIGH = 1
    NORMAL = 2
    LOW = 3
    IDLE = 4

    @classmethod
    def from_value(cls, value: int) -> "PriorityLevel":
        """Look up by numeric value, falling back to NORMAL."""
        for level in cls:
            if level.value == value:
                return level
        return cls.NORMAL


# Bursts shorter than this look interactive, longer than CPU_BOUND_BURST look CPU-bound
INTERACTIVE_BURST = 10
CPU_BOUND_BURST = 100
# Ready-queue residency after which a process in a lower queue gets a priority bonus
QUEUE_WAIT_BONUS_AFTER = 1000
BURST_SMOOTHING = 0.7


@dataclass
class SchedulingInfo:
    """
    Scheduling state of one process.

    Attributes:
        static_priority: Configured priority class
        dynamic_priority: Derived score, lower is more urgent
        total_need_time: Execution time the process requires in total
        remaining_need_time: Execution time still required
        time_slice: Time-slice length
        time_slice_remaining: Unused part of the current slice
        time_slice_expired: Set when the current slice is used up
        last_scheduled_time: Clock value of the last execution
        total_cpu_time: Execution time consumed so far
        last_cpu_burst: Length of the last burst
        average_cpu_burst: Exponentially smoothed burst length
        preemptable: Whether a higher-priority process may take the CPU
        needs_reschedule: Set when the process should go back to a ready queue
        queue_level: Ready queue index (0 = top)
        time_in_queue: Residency in the current ready queue
        total_wait_time: Residency across all ready queues
        interactive_score: 0.9 interactive .. 0.1 CPU-bound

    Invariants:
        0 <= remaining_need_time, and it never increases
        0 <= time_slice_remaining <= time_slice
    """
    static_priority: PriorityLevel = PriorityLevel.NORMAL
    dynamic_priority: int = 0
    total_need_time: int = 10
    remaining_need_time: int = None
    time_slice: int = 100
    time_slice_remaining: int = 0
    time_slice_expired: bool = False
    last_scheduled_time: int = 0
    total_cpu_time: int = 0
    last_cpu_burst: int = 0
    average_cpu_burst: float = 0.0
    preemptable: bool = True
    needs_reschedule: bool = False
    queue_level: int = 0
    time_in_queue: int = 0
    total_wait_time: int = 0
    interactive_score: float = 0.0
    completion_time: int = field(default=None, repr=False)

    def __post_init__(self):
        if self.remaining_need_time is None:
            self.remaining_need_time = self.total_need_time
        if self.total_need_time < 0:
            raise ValueError(f"total_need_time cannot be negative: {self.total_need_time}")
        if self.time_slice <= 0:
            raise ValueError(f"time_slice must be positive: {self.time_slice}")

    def calculate_dynamic_priority(self) -> int:
        """
        Recompute the dynamic priority score.

        Interactive processes and processes left waiting in lower queues move
        towards 0; CPU-bound processes move away from it.
        """
        base = self.static_priority.value * 10
        interactive_bonus = int(self.interactive_score * 5)
        cpu_penalty = 2 if self.average_cpu_burst > CPU_BOUND_BURST else 0
        queue_bonus = 1 if self.queue_level > 0 and self.time_in_queue > QUEUE_WAIT_BONUS_AFTER else 0

        score = base - interactive_bonus + cpu_penalty - queue_bonus
        return max(0, min(99, score))

    def refresh_dynamic_priority(self) -> int:
        self.dynamic_priority = self.calculate_dynamic_priority()
        return self.dynamic_priority

    def update_average_burst(self, burst: int) -> None:
        """Fold a burst into the smoothed average and re-score interactivity."""
        self.last_cpu_burst = burst
        if self.average_cpu_burst == 0.0:
            self.average_cpu_burst = float(burst)
        else:
            self.average_cpu_burst = (
                self.average_cpu_burst * BURST_SMOOTHING + burst * (1 - BURST_SMOOTHING)
            )

        if burst < INTERACTIVE_BURST:
            self.interactive_score = 0.9
        elif burst > CPU_BOUND_BURST:
            self.interactive_score = 0.1
        else:
            self.interactive_score = 0.5

    def should_preempt(self, current_time: int, higher_priority_waiting: bool, time_sliced: bool) -> bool:
        """
        Decide whether the running process must give up the CPU.

        Args:
            current_time: Scheduler clock
            higher_priority_waiting: A strictly more urgent process is ready
            time_sliced: The process runs under a round-robin-class policy
        """
        if self.preemptable and higher_priority_waiting:
            return True
        if time_sliced:
            return self.time_slice_expired or (current_time - self.last_scheduled_time) > self.time_slice
        return False

    def reset_time_slice(self) -> None:
        self.time_slice_remaining = self.time_slice
        self.time_slice_expired = False
        self.needs_reschedule = False

    def consume_time(self, amount: int) -> int:
        """
        Run for up to amount, bounded by the remaining slice and need.

        Time past the remaining need is credited back to the slice, so only
        the need actually consumed is charged.

        Returns:
            Execution time actually used
        """
        valid_time = max(0, min(amount, self.time_slice_remaining))
        used = min(valid_time, self.remaining_need_time)

        self.remaining_need_time -= used
        self.time_slice_remaining -= used
        self.total_cpu_time += used

        if self.time_slice_remaining <= 0:
            self.time_slice_remaining = 0
            self.time_slice_expired = True

        return used

    def lengthen_time_slice(self, factor: float) -> None:
        self.time_slice = max(1, int(self.time_slice * factor))

    def __str__(self) -> str:
        return (
            f"Scheduling Info:\n"
            f"  Priority: {self.static_priority.name} (dynamic: {self.dynamic_priority})\n"
            f"  Need: {self.remaining_need_time}/{self.total_need_time}\n"
            f"  Time Slice: {self.time_slice_remaining}/{self.time_slice} (expired: {self.time_slice_expired})\n"
            f"  Preemptable: {self.preemptable}, Needs Reschedule: {self.needs_reschedule}\n"
            f"  CPU Time: total={self.total_cpu_time}, last_burst={self.last_cpu_burst}, "
            f"avg_burst={self.average_cpu_burst:.2f}\n"
            f"  Queue: level={self.queue_level}, time_in_queue={self.time_in_queue}\n"
            f"  Interactive: score={self.interactive_score:.2f}"
        )
