"""
System State snapshot for the Resource Control Simulator.

Read-only picture of the allocation engine: availability, every process
ledger, the safety verdict and the deadlock flag.
"""

from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional


@dataclass
class ProcessSnapshot:
    """Ledger state of one process at snapshot time."""
    id: int
    name: str
    state: str
    allocation: Dict[str, int]
    max_demand: Dict[str, int]
    need: Dict[str, int]
    waiting_for: List[str]
    finished: bool
    in_safe_state: bool = True
    deadlock_detected: bool = False


@dataclass
class SystemStateSnapshot:
    """
    Global allocation state.

    Attributes:
        step: Simulation step the snapshot was taken at
        resource_types: Resource type names, in vector order
        available: Free resource instances by type
        total: Available plus all allocations, by type
        processes: One entry per live process
        is_safe: Safety verdict at snapshot time
        safe_sequence: PIDs in safe order (partial when unsafe)
        deadlock_detected: Whether any process is flagged deadlocked
    """
    step: int
    resource_types: List[str]
    available: Dict[str, int]
    total: Dict[str, int]
    processes: List[ProcessSnapshot] = field(default_factory=list)
    is_safe: bool = True
    safe_sequence: Optional[List[int]] = None
    deadlock_detected: bool = False

    @property
    def num_processes(self) -> int:
        """Number of processes in the snapshot."""
        return len(self.processes)

    @property
    def num_resources(self) -> int:
        """Number of resource types in the snapshot."""
        return len(self.resource_types)

    def to_dict(self) -> Dict:
        """Plain-dict form, suitable for json.dump."""
        return asdict(self)

    def _matrix(self, title: str, attr: str) -> List[str]:
        rows = [f"\n{title}:"]
        rows.append("        " + " ".join(f"{r:>4}" for r in self.resource_types))
        for proc in self.processes:
            values = getattr(proc, attr)
            rows.append(f"  P{proc.id:<4} " + " ".join(f"{values[r]:>4}" for r in self.resource_types))
        return rows

    def display(self) -> str:
        """
        Generate readable string representation of system state.

        Returns:
            Formatted string showing all matrices and vectors
        """
        output = []
        output.append("\n" + "="*60)
        output.append(f"SYSTEM STATE (step {self.step}: {self.num_processes} processes, "
                      f"{self.num_resources} resource types)")
        output.append("="*60)

        # Process states
        output.append("\nProcess States:")
        for proc in self.processes:
            flags = []
            if proc.finished:
                flags.append("finished")
            if proc.deadlock_detected:
                flags.append("deadlocked")
            if proc.waiting_for:
                flags.append(f"waiting for {proc.waiting_for}")
            output.append(f"  P{proc.id} {proc.name}: {proc.state:10} {', '.join(flags)}")

        # Available resources
        output.append("\nAvailable Resources:")
        output.append("  [" + ", ".join(f"{r}:{self.available[r]:2}" for r in self.resource_types) + "]")
        output.append("Total Resources:")
        output.append("  [" + ", ".join(f"{r}:{self.total[r]:2}" for r in self.resource_types) + "]")

        output.extend(self._matrix("Allocation Matrix", "allocation"))
        output.extend(self._matrix("Max Demand Matrix", "max_demand"))
        output.extend(self._matrix("Need Matrix (Max - Allocation)", "need"))

        output.append("")
        if self.is_safe:
            seq = " -> ".join(f"P{pid}" for pid in (self.safe_sequence or []))
            output.append(f"Safety: SAFE (sequence: {seq or 'empty'})")
        else:
            output.append("Safety: UNSAFE")
        output.append(f"Deadlock: {'DETECTED' if self.deadlock_detected else 'none'}")

        output.append("\n" + "="*60)
        return "\n".join(output)
