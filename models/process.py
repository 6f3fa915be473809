"""
Process model for the Resource Control Simulator.

Represents a process (PCB) with its lifecycle state, scheduling information
and resource ledger.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from models.ledger import ResourceLedger
from models.scheduling import PriorityLevel, SchedulingInfo


class ProcessState(Enum):
    """Process lifecycle states."""
    NEW = "NEW"
    READY = "READY"
    RUNNING = "RUNNING"
    BLOCKED = "BLOCKED"
    TERMINATED = "TERMINATED"


class SchedulingPolicy(Enum):
    """Selection policy a process is tagged with."""
    FCFS = "FCFS"    # first come, first served
    RR = "RR"        # round robin
    PRIORITY = "PRIORITY"
    SJF = "SJF"      # shortest job first
    HRRN = "HRRN"    # highest response ratio next
    MLFQ = "MLFQ"    # multi-level feedback queue

    @property
    def time_sliced(self) -> bool:
        """Round-robin-class policies give up the CPU when their slice expires."""
        return self in (SchedulingPolicy.RR, SchedulingPolicy.MLFQ)


# MLFQ demotion lengthens the slice by this factor
DEMOTION_SLICE_FACTOR = 1.5


def _initial_context() -> Dict[str, int]:
    return {'program_counter': 0, 'accumulator': 0}


@dataclass(eq=False)
class ProcessDescriptor:
    """
    Process control block.

    Attributes:
        pid: Process identifier (unique, cannot be reassigned)
        name: Display name
        state: Current lifecycle state
        policy: Scheduling policy the process is tagged with
        scheduling: Scheduling bookkeeping
        ledger: Banker's ledger (None for scheduler-only processes)
        context: Saved simulated register state
        time_used: Execution time consumed
    """
    pid: int
    name: str = ""
    state: ProcessState = ProcessState.NEW
    policy: SchedulingPolicy = SchedulingPolicy.RR
    scheduling: SchedulingInfo = field(default_factory=SchedulingInfo)
    ledger: Optional[ResourceLedger] = None
    context: Dict[str, int] = field(default_factory=_initial_context)
    time_used: int = 0

    def __post_init__(self):
        if not self.name:
            self.name = f"Process-{self.pid}"
        self.scheduling.refresh_dynamic_priority()

    def __setattr__(self, key, value):
        if key == 'pid' and 'pid' in self.__dict__:
            raise AttributeError(f"{self.name}: pid is immutable")
        super().__setattr__(key, value)

    @classmethod
    def create(
        cls,
        pid: int,
        name: str = "",
        priority: PriorityLevel = PriorityLevel.NORMAL,
        total_need_time: int = 100,
        time_slice: int = 100,
        preemptable: bool = True,
        policy: SchedulingPolicy = SchedulingPolicy.RR,
        queue_level: int = 0,
        ledger: Optional[ResourceLedger] = None,
        state: ProcessState = ProcessState.NEW
    ) -> "ProcessDescriptor":
        """
        Build a descriptor from scheduling parameters.

        The time slice starts full, ready for the first dispatch.
        """
        info = SchedulingInfo(
            static_priority=priority,
            total_need_time=total_need_time,
            time_slice=time_slice,
            preemptable=preemptable,
            queue_level=queue_level,
        )
        info.reset_time_slice()
        return cls(pid=pid, name=name, state=state, policy=policy, scheduling=info, ledger=ledger)

    def is_terminated(self) -> bool:
        return self.state == ProcessState.TERMINATED

    def needs_execution(self) -> bool:
        return self.scheduling.remaining_need_time > 0

    def update_scheduling_stats(self, current_time: int, execution_time: int) -> int:
        """
        Execute for up to execution_time and update burst statistics.

        Returns:
            Execution time actually used
        """
        info = self.scheduling
        info.last_scheduled_time = current_time
        used = info.consume_time(execution_time)
        info.update_average_burst(used)
        info.refresh_dynamic_priority()

        if self.ledger is not None:
            self.ledger.accrue_hold_time(used)
        self.time_used += used
        return used

    def mark_for_reschedule(self) -> None:
        self.scheduling.needs_reschedule = True

    def boost_priority(self) -> bool:
        """
        Move one queue level up (anti-starvation).

        Returns:
            True if the level changed
        """
        info = self.scheduling
        if info.queue_level <= 0:
            return False
        info.queue_level -= 1
        info.time_in_queue = 0
        info.refresh_dynamic_priority()
        return True

    def demote_priority(self, lowest_level: int) -> bool:
        """
        Move one queue level down with a longer slice (MLFQ).

        At lowest_level the process stays put and keeps its slice.

        Returns:
            True if the level changed
        """
        info = self.scheduling
        if info.queue_level >= lowest_level:
            return False
        info.queue_level += 1
        info.time_in_queue = 0
        info.lengthen_time_slice(DEMOTION_SLICE_FACTOR)
        info.refresh_dynamic_priority()
        return True

    def save_context(self, registers: Dict[str, int]) -> None:
        self.context = dict(registers)

    def load_context(self) -> Dict[str, int]:
        return dict(self.context)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"ProcessDescriptor(pid={self.pid}, name={self.name}, "
            f"state={self.state.value}, policy={self.policy.value}, "
            f"need={self.scheduling.remaining_need_time}/{self.scheduling.total_need_time}, "
            f"level={self.scheduling.queue_level})"
        )
