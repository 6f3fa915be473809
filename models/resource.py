"""
Resource model for the Resource Control Simulator.

Defines the configured set of resource types and the request records kept
in every process ledger.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np


class ResourceTypes:
    """
    Ordered, validated set of resource type identifiers.

    Every vector in the simulator (available, max_demand, allocation, need)
    is a dense integer array indexed by a type's position in this set.

    Invariant:
        Names are unique and non-empty.
    """

    def __init__(self, names: Iterable[str]):
        self.names: List[str] = [str(n) for n in names]
        if not self.names:
            raise ValueError("At least one resource type is required")
        if any(not n for n in self.names):
            raise ValueError("Resource type names must be non-empty")
        if len(set(self.names)) != len(self.names):
            raise ValueError(f"Duplicate resource type in {self.names}")
        self._index = {name: i for i, name in enumerate(self.names)}

    def __len__(self) -> int:
        return len(self.names)

    def __iter__(self):
        return iter(self.names)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResourceTypes):
            return NotImplemented
        return self.names == other.names

    def __repr__(self) -> str:
        return f"ResourceTypes({self.names})"

    def index(self, name: str) -> int:
        """
        Get the dense index of a resource type.

        Raises:
            KeyError: If the type is not configured
        """
        if name not in self._index:
            raise KeyError(f"Unknown resource type '{name}' (configured: {self.names})")
        return self._index[name]

    def zeros(self) -> np.ndarray:
        """Zero vector [R]."""
        return np.zeros(len(self.names), dtype=int)

    def vector(self, amounts: Optional[Mapping[str, int]], require_all: bool = False) -> np.ndarray:
        """
        Convert a name-keyed map into a dense vector [R].

        Args:
            amounts: Map of resource type name to amount (missing types are 0)
            require_all: Reject maps that do not name every configured type

        Returns:
            Integer vector indexed by resource type

        Raises:
            KeyError: If the map names an unknown type, or misses one
                while require_all is set
            ValueError: If an amount is not an integer
        """
        vec = self.zeros()
        if amounts is None:
            amounts = {}
        for name, amount in amounts.items():
            if isinstance(amount, bool) or not isinstance(amount, (int, np.integer)):
                raise ValueError(f"Amount for '{name}' must be an integer, got {amount!r}")
            vec[self.index(name)] = amount
        if require_all:
            missing = [n for n in self.names if n not in amounts]
            if missing:
                raise KeyError(f"Missing resource types {missing}")
        return vec

    def to_dict(self, vector: Sequence[int]) -> Dict[str, int]:
        """Convert a dense vector back into a name-keyed map."""
        return {name: int(vector[i]) for i, name in enumerate(self.names)}

    def format(self, vector: Sequence[int]) -> str:
        """Compact rendering, e.g. {A:3, B:0}."""
        return "{" + ", ".join(f"{n}:{int(vector[i])}" for i, n in enumerate(self.names)) + "}"

    def names_of(self, vector: Sequence[int]) -> List[str]:
        """Names of the types with a non-zero entry in vector."""
        return [n for i, n in enumerate(self.names) if vector[i] != 0]


@dataclass
class ResourceRequest:
    """
    One entry of a ledger's request history.

    Attributes:
        amounts: Requested amount per resource type [R]
        timestamp: Simulation step of the request
        granted: Whether the request was granted
        completed: Whether granted resources were later released
    """
    amounts: np.ndarray
    timestamp: int
    granted: bool = False
    completed: bool = False
