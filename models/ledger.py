"""
Resource ledger for the Resource Control Simulator.

Per-process Banker's bookkeeping: maximum demand, current allocation and
remaining need, plus the waiting set and the request history.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Set

import numpy as np

from models.resource import ResourceRequest, ResourceTypes


class LedgerInconsistencyError(ValueError):
    """Raised when allocation + need != max_demand or a bound is violated."""
    pass


class LedgerStatus(Enum):
    """Derived position of a ledger in the request lifecycle."""
    UNCONSTRAINED = "UNCONSTRAINED"
    WAITING = "WAITING"
    GRANTED = "GRANTED"
    FINISHED = "FINISHED"


@dataclass
class ResourceLedger:
    """
    Banker's ledger owned by one process.

    Attributes:
        resource_types: Configured resource type set
        max_demand: Maximum resource demand declared by the process [R]
        allocation: Resources currently held [R]
        need: Remaining need, max_demand - allocation [R]
        waiting_for: Resource types the process is blocked on
        deadlock_detected: Set by the last deadlock detection scan
        in_safe_state: Set by the last safety check
        request_history: Every request made, in order
        hold_time: Simulated time spent holding each resource type [R]

    Invariant (checked by validate()):
        allocation + need == max_demand, allocation <= max_demand, need >= 0
    """
    resource_types: ResourceTypes
    max_demand: np.ndarray
    allocation: np.ndarray = None
    need: np.ndarray = None
    waiting_for: Set[str] = field(default_factory=set)
    deadlock_detected: bool = False
    in_safe_state: bool = True
    request_history: List[ResourceRequest] = field(default_factory=list)
    hold_time: np.ndarray = None

    def __post_init__(self):
        """Normalize vectors and derive need if not provided."""
        self.max_demand = np.asarray(self.max_demand, dtype=int).copy()
        if self.allocation is None:
            self.allocation = self.resource_types.zeros()
        self.allocation = np.asarray(self.allocation, dtype=int).copy()
        if self.need is None:
            self.need = self.max_demand - self.allocation
        self.need = np.asarray(self.need, dtype=int).copy()
        if self.hold_time is None:
            self.hold_time = self.resource_types.zeros()

        size = len(self.resource_types)
        for name, vec in (("max_demand", self.max_demand), ("allocation", self.allocation),
                          ("need", self.need)):
            if vec.shape != (size,):
                raise ValueError(f"{name} has shape {vec.shape}, expected ({size},)")
        if np.any(self.max_demand < 0):
            raise ValueError(f"max_demand cannot be negative: {self.max_demand.tolist()}")

    @classmethod
    def from_mappings(
        cls,
        resource_types: ResourceTypes,
        max_demand: Mapping[str, int],
        allocation: Optional[Mapping[str, int]] = None
    ) -> "ResourceLedger":
        """
        Build a ledger from name-keyed maps.

        max_demand must name exactly the configured resource types;
        allocation may omit types (treated as 0) but not add unknown ones.

        Raises:
            KeyError: If either map does not match the configured type set
            LedgerInconsistencyError: If allocation exceeds max_demand
        """
        extra = set(max_demand) - set(resource_types.names)
        if extra:
            raise KeyError(f"max_demand names unknown resource types {sorted(extra)}")
        ledger = cls(
            resource_types=resource_types,
            max_demand=resource_types.vector(max_demand, require_all=True),
            allocation=resource_types.vector(allocation or {}),
        )
        ledger.validate("at construction")
        return ledger

    def validate(self, context: str = "") -> None:
        """
        Check the ledger invariant.

        Raises:
            LedgerInconsistencyError: Describing every violated resource type
        """
        problems = []
        for i, name in enumerate(self.resource_types.names):
            alloc, need, max_d = int(self.allocation[i]), int(self.need[i]), int(self.max_demand[i])
            if alloc + need != max_d:
                problems.append(f"{name}: {alloc} + {need} != {max_d}")
            if alloc > max_d:
                problems.append(f"{name}: allocation {alloc} > max_demand {max_d}")
            if alloc < 0:
                problems.append(f"{name}: negative allocation {alloc}")
            if need < 0:
                problems.append(f"{name}: negative need {need}")
        if problems:
            raise LedgerInconsistencyError(
                f"Ledger inconsistency {context}: " + "; ".join(problems)
            )

    def is_consistent(self) -> bool:
        """True when validate() would pass."""
        try:
            self.validate()
        except LedgerInconsistencyError:
            return False
        return True

    def record_request(self, amounts: np.ndarray, timestamp: int) -> ResourceRequest:
        """Append a request to the history (not yet granted)."""
        request = ResourceRequest(amounts=np.asarray(amounts, dtype=int).copy(), timestamp=timestamp)
        self.request_history.append(request)
        return request

    def grant(self, amounts: np.ndarray) -> None:
        """Move amounts from need to allocation and stop waiting."""
        self.allocation = self.allocation + amounts
        self.need = self.need - amounts
        self.waiting_for.clear()

    def release(self, amounts: np.ndarray) -> None:
        """
        Give amounts back; need is recomputed from max_demand.

        Granted history entries touching a released type are marked completed.
        """
        self.allocation = self.allocation - amounts
        self.need = self.max_demand - self.allocation
        released = amounts > 0
        for request in self.request_history:
            if request.granted and not request.completed and np.any(request.amounts[released] > 0):
                request.completed = True

    def release_all(self) -> np.ndarray:
        """Release the entire allocation, returning what was held."""
        held = self.allocation.copy()
        self.release(held)
        return held

    def can_be_satisfied(self, work: np.ndarray) -> bool:
        """True when need <= work for every resource type."""
        return bool(np.all(self.need <= work))

    def is_finished(self) -> bool:
        """True when the process needs nothing more."""
        return bool(np.all(self.need == 0))

    @property
    def status(self) -> LedgerStatus:
        """Current position in the Unconstrained/Waiting/Granted/Finished cycle."""
        if self.is_finished():
            return LedgerStatus.FINISHED
        if self.waiting_for:
            return LedgerStatus.WAITING
        if any(r.granted and not r.completed for r in self.request_history):
            return LedgerStatus.GRANTED
        return LedgerStatus.UNCONSTRAINED

    def snapshot(self) -> Dict:
        """Copy of the mutable vectors, for rollback."""
        return {
            'allocation': self.allocation.copy(),
            'need': self.need.copy(),
            'waiting_for': set(self.waiting_for),
        }

    def restore(self, snapshot: Dict) -> None:
        """Restore vectors from snapshot()."""
        self.allocation = snapshot['allocation'].copy()
        self.need = snapshot['need'].copy()
        self.waiting_for = set(snapshot['waiting_for'])

    def accrue_hold_time(self, elapsed: int) -> None:
        """Add elapsed time to every resource type currently held."""
        self.hold_time = self.hold_time + np.where(self.allocation > 0, elapsed, 0)

    def __repr__(self) -> str:
        rt = self.resource_types
        return (
            f"ResourceLedger(max={rt.format(self.max_demand)}, "
            f"alloc={rt.format(self.allocation)}, need={rt.format(self.need)}, "
            f"waiting={sorted(self.waiting_for)}, safe={self.in_safe_state}, "
            f"deadlocked={self.deadlock_detected})"
        )
