"""
Deadlock Detection Algorithm for the Resource Control Simulator.

Implements matrix-based deadlock detection (Work/Finish algorithm) for
multi-instance resource systems.
"""

import numpy as np
from typing import List, Sequence, Tuple

from models.process import ProcessDescriptor


def detect_deadlock(
    available: np.ndarray,
    processes: Sequence[ProcessDescriptor]
) -> Tuple[bool, List[ProcessDescriptor]]:
    """
    Detect deadlock using the Work/Finish algorithm over remaining need.

    Algorithm (Multi-Instance Resources):
    1. Initialize Work = Available.copy(), Finish = [False] * num_processes
    2. Find process i where Finish[i] == False and Need[i] <= Work (element-wise)
    3. If found: Finish[i] = True, Work += Allocation[i], restart at step 2
    4. If no such process: every process with Finish[i] == False is deadlocked

    A process is deadlocked when no reachable work vector ever covers its
    need. This is independent of the ledgers' in_safe_state flags, which
    belong to the safety check.

    Side effect: sets each ledger's deadlock_detected flag.

    Time Complexity: O(P²×R) where P = processes, R = resource types

    Args:
        available: Free resource instances [R]
        processes: Live processes, all with ledgers

    Returns:
        Tuple of (deadlock_exists, deadlocked processes in input order)
    """
    num_processes = len(processes)

    # Step 1: Initialize Work and Finish vectors
    work = np.asarray(available, dtype=int).copy()
    finish = np.zeros(num_processes, dtype=bool)

    # Step 2-3: Iteratively find processes that can complete
    found_progress = True
    while found_progress:
        found_progress = False

        for i, process in enumerate(processes):
            if finish[i]:
                continue

            if process.ledger.can_be_satisfied(work):
                # Process can complete - add its allocation back to work
                work += process.ledger.allocation
                finish[i] = True
                found_progress = True
                # Restart search from beginning for deterministic behavior
                break

    # Step 4: Identify deadlocked processes
    deadlocked = []
    for i, process in enumerate(processes):
        process.ledger.deadlock_detected = not finish[i]
        if not finish[i]:
            deadlocked.append(process)

    return len(deadlocked) > 0, deadlocked


def should_run_detection(current_step: int, detect_interval: int) -> bool:
    """
    Determine if detection should run at current simulation step.

    Args:
        current_step: Current simulation step number
        detect_interval: Steps between detection checks

    Returns:
        True if detection should run
    """
    return detect_interval > 0 and current_step % detect_interval == 0
