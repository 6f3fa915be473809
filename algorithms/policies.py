"""
Selection strategies for the multi-level scheduler.

One strategy per SchedulingPolicy. A strategy only *chooses* a process from a
ready queue; it never removes the choice. Removal happens in the scheduler's
context switch, so a process can never end up both selected and enqueued
twice.
"""

from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, Dict, Optional

from models.process import ProcessDescriptor, SchedulingPolicy


class SelectionStrategy(ABC):
    """Picks the next process from one non-empty ready queue."""

    policy: SchedulingPolicy

    @abstractmethod
    def select(
        self,
        queue: Deque[ProcessDescriptor],
        current: Optional[ProcessDescriptor]
    ) -> Optional[ProcessDescriptor]:
        """
        Choose a process from queue without removing it.

        Args:
            queue: Ready queue to choose from (FIFO order)
            current: Process currently holding the CPU, if any

        Returns:
            The chosen process, or None if queue is empty
        """


class FCFSStrategy(SelectionStrategy):
    """First come, first served: the queue head."""
    policy = SchedulingPolicy.FCFS

    def select(self, queue, current):
        return queue[0] if queue else None


class RoundRobinStrategy(SelectionStrategy):
    """Rotate the current process to the tail, then take the head."""
    policy = SchedulingPolicy.RR

    def select(self, queue, current):
        if current is not None and current in queue:
            queue.remove(current)
            queue.append(current)
        return queue[0] if queue else None


class PriorityStrategy(SelectionStrategy):
    """Lowest dynamic priority value wins; ties keep queue order."""
    policy = SchedulingPolicy.PRIORITY

    def select(self, queue, current):
        if not queue:
            return None
        return min(queue, key=lambda p: p.scheduling.dynamic_priority)


class ShortestJobFirstStrategy(SelectionStrategy):
    """Smallest remaining need wins; ties keep queue order."""
    policy = SchedulingPolicy.SJF

    def select(self, queue, current):
        if not queue:
            return None
        return min(queue, key=lambda p: p.scheduling.remaining_need_time)


class HighestResponseRatioStrategy(SelectionStrategy):
    """
    Highest response ratio next.

    ratio = (wait + service) / service, with service the total need time and
    wait the accumulated ready-queue time. Ties keep queue order.
    """
    policy = SchedulingPolicy.HRRN

    def select(self, queue, current):
        if not queue:
            return None
        return max(queue, key=response_ratio)


class MultiLevelFeedbackStrategy(SelectionStrategy):
    """FIFO within a level; demotion between levels is the scheduler's job."""
    policy = SchedulingPolicy.MLFQ

    def select(self, queue, current):
        return queue[0] if queue else None


def response_ratio(process: ProcessDescriptor) -> float:
    info = process.scheduling
    service = max(1, info.total_need_time)
    return (info.total_wait_time + service) / service


_STRATEGIES: Dict[SchedulingPolicy, SelectionStrategy] = {
    s.policy: s for s in (
        FCFSStrategy(),
        RoundRobinStrategy(),
        PriorityStrategy(),
        ShortestJobFirstStrategy(),
        HighestResponseRatioStrategy(),
        MultiLevelFeedbackStrategy(),
    )
}


def strategy_for(policy: SchedulingPolicy) -> SelectionStrategy:
    """Strategy implementing policy."""
    return _STRATEGIES[policy]


def new_ready_queue() -> Deque[ProcessDescriptor]:
    return deque()
