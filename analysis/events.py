"""
Event Model for the Resource Control Simulator.

Defines the trace events both engines emit for every decision they take.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class EventType(Enum):
    """Types of events in the simulation."""
    # Scheduler
    ADMIT = "admit"
    PREEMPT = "preempt"
    CONTEXT_SWITCH = "context_switch"
    EXECUTE = "execute"
    TIME_SLICE_EXPIRED = "time_slice_expired"
    DEMOTE = "demote"
    PROMOTE = "promote"
    IDLE = "idle"
    TERMINATE = "terminate"
    PRIORITY_CHANGE = "priority_change"
    # Allocation authority
    ALLOCATION = "allocation"
    DENIAL = "denial"
    RELEASE = "release"
    SAFETY_CHECK = "safety_check"
    DEADLOCK = "deadlock"
    ADD_PROCESS = "add_process"
    REMOVE_PROCESS = "remove_process"
    LEDGER_VIOLATION = "ledger_violation"


@dataclass
class SimulationEvent:
    """
    Represents a single event in the simulation.

    Attributes:
        step: Simulation step (scheduler clock or banker round) of the event
        event_type: Type of event
        process_id: PID involved in event (-1 for system-wide events)
        resources: Resource amounts involved, by type name (if applicable)
        message: Human-readable description
        reason: Reason for denial/preemption (if applicable)
    """
    step: int
    event_type: EventType
    process_id: int
    resources: Optional[Dict[str, int]] = None
    message: str = ""
    reason: str = ""

    def __str__(self) -> str:
        """Format event for logging."""
        base = f"Step {self.step}: P{self.process_id}" if self.process_id >= 0 else f"Step {self.step}:"

        if self.event_type == EventType.ALLOCATION:
            return f"{base} requests {self.resources} - GRANTED ({self.reason})"
        elif self.event_type == EventType.DENIAL:
            return f"{base} requests {self.resources} - DENIED ({self.reason})"
        elif self.event_type == EventType.RELEASE:
            return f"{base} releases {self.resources}"
        elif self.event_type == EventType.DEADLOCK:
            return f"{base} DEADLOCK DETECTED ({self.message})"
        elif self.event_type == EventType.CONTEXT_SWITCH:
            return f"{base} CONTEXT SWITCH ({self.message})"
        elif self.event_type == EventType.PREEMPT:
            return f"{base} PREEMPTED ({self.reason})"
        else:
            return f"{base} {self.event_type.value}: {self.message}"


@dataclass
class EventLog:
    """Collection of simulation events."""
    events: list = None

    def __post_init__(self):
        if self.events is None:
            self.events = []

    def add(self, event: SimulationEvent) -> None:
        """Add an event to the log."""
        self.events.append(event)

    def get_events_by_type(self, event_type: EventType) -> list:
        """Get all events of a specific type."""
        return [e for e in self.events if e.event_type == event_type]

    def get_events_by_step(self, step: int) -> list:
        """Get all events from a specific step."""
        return [e for e in self.events if e.step == step]

    def count(self, event_type: EventType) -> int:
        return len(self.get_events_by_type(event_type))

    def display(self) -> str:
        """Format all events for display."""
        return "\n".join(str(event) for event in self.events)
