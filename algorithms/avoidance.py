"""
Deadlock Avoidance Algorithm (Banker's Algorithm) for the Simulator.

Implements the safety algorithm and the AllocationAuthority, which grants
resource requests only when the system stays in a safe state.
"""

import numpy as np
from threading import RLock
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from models.ledger import LedgerInconsistencyError
from models.process import ProcessDescriptor, ProcessState
from models.resource import ResourceTypes
from models.system_state import ProcessSnapshot, SystemStateSnapshot
from algorithms import detection
from analysis.events import EventLog, EventType, SimulationEvent
from utils.logger import SimulatorLogger


ResourceAmounts = Union[Mapping[str, int], Sequence[int], np.ndarray]


def find_safe_sequence(
    available: np.ndarray,
    processes: Sequence[ProcessDescriptor]
) -> Tuple[bool, List[ProcessDescriptor]]:
    """
    Check if the system is in a safe state using Banker's Algorithm.

    Algorithm:
    1. Initialize Work = Available, Finish = [False] * num_processes
    2. Find process i where Finish[i] == False and Need[i] <= Work
    3. If found: Finish[i] = True, Work += Allocation[i], add it to sequence
    4. Repeat step 2 until all processes finish (SAFE) or stuck (UNSAFE)

    Time Complexity: O(P²×R)

    Args:
        available: Free resource instances [R]
        processes: Live processes, all with ledgers

    Returns:
        Tuple of (is_safe, sequence). The sequence holds every process that
        could finish, so it is partial when the state is unsafe.

    References:
        Silberschatz, A., Galvin, P. B., & Gagne, G. (2018).
        Operating System Concepts (10th ed.). Chapter 7.5: Deadlock Avoidance.
    """
    # Work = copy of Available (prevents modification of original)
    work = np.asarray(available, dtype=int).copy()
    finish = np.zeros(len(processes), dtype=bool)
    safe_sequence = []

    made_progress = True
    while made_progress:
        made_progress = False

        for i, process in enumerate(processes):
            if finish[i]:
                continue

            # Need[i] <= Work for all resource types
            if process.ledger.can_be_satisfied(work):
                # Process can finish: add its allocation back to work
                work += process.ledger.allocation
                finish[i] = True
                safe_sequence.append(process)
                made_progress = True
                break  # Restart search from beginning for determinism

    return bool(np.all(finish)), safe_sequence


class AllocationAuthority:
    """
    Banker's-algorithm engine.

    Owns the global availability vector and the live set of process
    ledgers. Every mutating operation validates first, commits
    provisionally, and rolls back to the exact pre-call state on rejection.

    Attributes:
        resource_types: Configured resource type set
        processes: Live processes, in admission order
        last_safe_sequence: PIDs of the last safety check's sequence
        last_safe: Verdict of the last safety check
        current_step: Step stamped on history entries and trace events
    """

    def __init__(
        self,
        resource_types: ResourceTypes,
        logger: Optional[SimulatorLogger] = None,
        event_log: Optional[EventLog] = None
    ):
        self.resource_types = resource_types
        self.logger = logger or SimulatorLogger(echo=False)
        self.event_log = event_log if event_log is not None else EventLog()
        self.processes: List[ProcessDescriptor] = []
        self.last_safe_sequence: List[int] = []
        self.last_safe = True
        self.current_step = 0

        self._available = resource_types.zeros()
        self._lock = RLock()

    # ------------------------------------------------------------------
    # Setup and read surface
    # ------------------------------------------------------------------

    def initialize(self, available: ResourceAmounts, processes: Sequence[ProcessDescriptor]) -> None:
        """
        Reset the engine and take ownership of available and processes.

        Raises:
            ValueError: If availability is incomplete or not a non-negative
                integer vector, PIDs repeat, or a process has no ledger over
                the configured resource types
            LedgerInconsistencyError: If a ledger violates its invariant
        """
        with self._lock:
            try:
                vector = self._as_vector(available, require_all=True)
            except KeyError as e:
                raise ValueError(f"Invalid available resources: {e}")
            if np.any(vector < 0):
                raise ValueError(f"Available resources cannot be negative: {self.resource_types.format(vector)}")

            pids = [p.pid for p in processes]
            if len(set(pids)) != len(pids):
                raise ValueError(f"Duplicate process ids in {pids}")
            for process in processes:
                self._check_ledger(process)
                process.ledger.validate(f"for {process.name} at initialization")

            self._available = vector.copy()
            self.processes = list(processes)
            self.last_safe_sequence = []
            self.last_safe = True

            self.logger.info("=== Banker's Algorithm System Initialization ===")
            self.logger.info(f"Available resources: {self.resource_types.format(self._available)}")
            self.logger.info(f"Resource types: {self.resource_types.names}")
            self.logger.info(f"Process count: {len(self.processes)}")

    @property
    def available(self) -> Dict[str, int]:
        """Free resource instances by type."""
        return self.resource_types.to_dict(self._available)

    @property
    def available_vector(self) -> np.ndarray:
        return self._available.copy()

    def get_process(self, pid: int) -> Optional[ProcessDescriptor]:
        return next((p for p in self.processes if p.pid == pid), None)

    def total_resources(self) -> np.ndarray:
        """Available plus every live allocation [R]."""
        with self._lock:
            total = self._available.copy()
            for process in self.processes:
                total += process.ledger.allocation
            return total

    # ------------------------------------------------------------------
    # Safety and detection
    # ------------------------------------------------------------------

    def is_safe_state(self) -> bool:
        """
        Run the safety algorithm on the current state.

        Side effect: each ledger's in_safe_state flag is set to whether the
        process appears in the resulting sequence.
        """
        with self._lock:
            is_safe, sequence = find_safe_sequence(self._available, self.processes)
            in_sequence = {p.pid for p in sequence}
            for process in self.processes:
                process.ledger.in_safe_state = process.pid in in_sequence

            self.last_safe = is_safe
            self.last_safe_sequence = [p.pid for p in sequence]

            if is_safe:
                seq_str = " -> ".join(p.name for p in sequence)
                message = f"System is in a safe state (sequence: {seq_str or 'empty'})"
                self.logger.log_step(self.current_step, message, "debug")
            else:
                stuck = [p.name for p in self.processes if p.pid not in in_sequence]
                message = f"System is in an unsafe state (cannot finish: {stuck})"
                self.logger.log_step(self.current_step, message, "debug")
            self._emit(EventType.SAFETY_CHECK, None, message)
            return is_safe

    def detect_deadlock(self) -> List[ProcessDescriptor]:
        """
        Find processes that can never finish from the current state.

        Returns:
            Deadlocked processes in live-set order (empty if none)
        """
        with self._lock:
            exists, deadlocked = detection.detect_deadlock(self._available, self.processes)
            if exists:
                names = [p.name for p in deadlocked]
                self.logger.log_deadlock(self.current_step, names)
                self._emit(EventType.DEADLOCK, None, f"Deadlock detected - processes: {names}")
            else:
                self.logger.log_step(self.current_step, "No deadlock detected.", "debug")
            return deadlocked

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    def request_resources(self, process: ProcessDescriptor, request: ResourceAmounts) -> bool:
        """
        Handle a resource request using Banker's Algorithm.

        Steps:
        1. Validate: request <= need, request <= available,
           allocation + request <= max_demand
        2. Tentatively allocate resources
        3. Run safety algorithm on new state
        4. If safe and the ledger is still consistent: keep the allocation
           Otherwise: roll back everything, process waits

        Args:
            process: Process making the request
            request: Amounts requested by resource type

        Returns:
            True if the request was granted
        """
        with self._lock:
            if not self._is_live(process):
                return self._deny(process, request, f"{process.name} is not managed by this system")
            try:
                amounts = self._as_vector(request)
            except (KeyError, ValueError) as e:
                return self._deny(process, request, f"Invalid request: {e}")
            if np.any(amounts < 0):
                return self._deny(process, request, "Request amounts cannot be negative")

            ledger = process.ledger
            history_entry = ledger.record_request(amounts, self.current_step)
            shown = self._describe(amounts)

            try:
                ledger.validate(f"for {process.name} before resource request")
            except LedgerInconsistencyError as e:
                self._report_violation(process, e)
                return self._deny(process, shown, "Invalid process state before resource request")

            # Step 1: Validate against need, availability and max demand
            for i, name in enumerate(self.resource_types.names):
                if amounts[i] > ledger.need[i]:
                    return self._deny(process, shown,
                                      f"Request exceeds need for {name} "
                                      f"(requested: {amounts[i]}, need: {ledger.need[i]})")

            for i, name in enumerate(self.resource_types.names):
                if amounts[i] > self._available[i]:
                    ledger.waiting_for.update(self.resource_types.names_of(amounts))
                    process.state = ProcessState.BLOCKED
                    return self._deny(process, shown,
                                      f"Insufficient {name} (requested: {amounts[i]}, "
                                      f"available: {self._available[i]}) - process waits")

            for i, name in enumerate(self.resource_types.names):
                if ledger.allocation[i] + amounts[i] > ledger.max_demand[i]:
                    return self._deny(process, shown,
                                      f"Allocation would exceed max demand for {name} "
                                      f"(current: {ledger.allocation[i]}, requested: {amounts[i]}, "
                                      f"max: {ledger.max_demand[i]})")

            # Step 2: Tentatively allocate resources
            saved = self._save_state(process)
            self._available = self._available - amounts
            ledger.grant(amounts)

            # Step 3: Run safety algorithm
            if not self.is_safe_state():
                # UNSAFE: Rollback allocation, process waits
                self._restore_state(process, saved)
                ledger.waiting_for.update(self.resource_types.names_of(amounts))
                process.state = ProcessState.BLOCKED
                return self._deny(process, shown, "Unsafe state detected - restored to state before allocation")

            try:
                ledger.validate(f"for {process.name} after successful allocation")
            except LedgerInconsistencyError as e:
                self._restore_state(process, saved)
                self._report_violation(process, e)
                return self._deny(process, shown, "State inconsistency after allocation - rolled back")

            # SAFE: Commit allocation
            history_entry.granted = True
            if process.state == ProcessState.BLOCKED:
                process.state = ProcessState.READY

            seq_str = " -> ".join(f"P{pid}" for pid in self.last_safe_sequence)
            reason = f"Safe state maintained, sequence: {seq_str}"
            self.logger.log_request(self.current_step, process.name, shown, True, reason)
            self._emit(EventType.ALLOCATION, process, f"Granted {shown}", resources=shown, reason=reason)
            return True

    def release_resources(self, process: ProcessDescriptor, release: ResourceAmounts) -> bool:
        """
        Release resources held by a process.

        need is recomputed as max_demand - allocation; a safety check
        follows for bookkeeping only.

        Returns:
            False if any amount exceeds the current allocation
        """
        with self._lock:
            if not self._is_live(process):
                return self._reject_release(process, release, f"{process.name} is not managed by this system")
            try:
                amounts = self._as_vector(release)
            except (KeyError, ValueError) as e:
                return self._reject_release(process, release, f"Invalid release: {e}")
            if np.any(amounts < 0):
                return self._reject_release(process, release, "Release amounts cannot be negative")

            ledger = process.ledger
            shown = self._describe(amounts)
            try:
                ledger.validate(f"for {process.name} before resource release")
            except LedgerInconsistencyError as e:
                self._report_violation(process, e)
                return self._reject_release(process, shown, "Invalid process state before resource release")

            for i, name in enumerate(self.resource_types.names):
                if amounts[i] > ledger.allocation[i]:
                    return self._reject_release(process, shown,
                                                f"Trying to release more {name} than allocated "
                                                f"(release: {amounts[i]}, allocated: {ledger.allocation[i]})")

            saved = self._save_state(process)
            ledger.release(amounts)
            self._available = self._available + amounts

            try:
                ledger.validate(f"for {process.name} after resource release")
            except LedgerInconsistencyError as e:
                self._restore_state(process, saved)
                self._report_violation(process, e)
                return self._reject_release(process, shown, "State inconsistency after release - rolled back")

            self.logger.log_step(self.current_step, f"{process.name} releases {shown}")
            self._emit(EventType.RELEASE, process, f"Released {shown}", resources=shown)

            self._refresh_verdicts()
            return True

    def add_process(self, process: ProcessDescriptor) -> bool:
        """
        Admit a new process.

        Rejected if a max demand exceeds total system resources, the pid is
        already live, or the initial allocation exceeds availability. The
        initial allocation is taken from availability.

        Returns:
            True if the process was admitted (even into an unsafe state)
        """
        with self._lock:
            try:
                self._check_ledger(process)
                process.ledger.validate(f"for {process.name} on admission")
            except (ValueError, LedgerInconsistencyError) as e:
                return self._reject_add(process, str(e))

            if self.get_process(process.pid) is not None:
                return self._reject_add(process, f"Process id {process.pid} is already in the system")

            ledger = process.ledger
            total = self.total_resources()
            for i, name in enumerate(self.resource_types.names):
                if ledger.max_demand[i] > total[i]:
                    return self._reject_add(process,
                                            f"Max demand for {name} exceeds system total "
                                            f"(demand: {ledger.max_demand[i]}, total: {total[i]})")
            for i, name in enumerate(self.resource_types.names):
                if ledger.allocation[i] > self._available[i]:
                    return self._reject_add(process,
                                            f"Initial allocation of {name} exceeds availability "
                                            f"(allocation: {ledger.allocation[i]}, available: {self._available[i]})")

            self.processes.append(process)
            self._available = self._available - ledger.allocation
            if process.state == ProcessState.NEW:
                process.state = ProcessState.READY

            self.logger.log_step(self.current_step, f"Process {process.name} added to system.")
            self._emit(EventType.ADD_PROCESS, process, f"Added {process.name}")

            if not self.is_safe_state():
                self.logger.log_step(self.current_step,
                                     f"System is unsafe after adding {process.name}", "warning")
            return True

    def remove_process(self, pid: int) -> bool:
        """
        Release everything a process holds and drop it from the live set.

        Returns:
            False if the pid is unknown or its resources could not be released
        """
        with self._lock:
            process = self.get_process(pid)
            if process is None:
                self.logger.log_step(self.current_step, f"Process with ID {pid} not found!", "warning")
                return False

            held = process.ledger.allocation.copy()
            if np.any(held > 0) and not self.release_resources(process, held):
                self.logger.log_step(self.current_step,
                                     f"Could not release resources of {process.name}; not removed", "error")
                return False

            self.processes = [p for p in self.processes if p is not process]
            process.ledger.waiting_for.clear()
            process.ledger.deadlock_detected = False
            process.state = ProcessState.TERMINATED

            self.logger.log_step(self.current_step, f"Process {process.name} removed from system.")
            self._emit(EventType.REMOVE_PROCESS, process, f"Removed {process.name}")
            self._refresh_verdicts()
            return True

    def snapshot(self) -> SystemStateSnapshot:
        """Current state, with a fresh safety verdict."""
        with self._lock:
            is_safe = self.is_safe_state()
            rt = self.resource_types
            processes = [
                ProcessSnapshot(
                    id=p.pid,
                    name=p.name,
                    state=p.state.value,
                    allocation=rt.to_dict(p.ledger.allocation),
                    max_demand=rt.to_dict(p.ledger.max_demand),
                    need=rt.to_dict(p.ledger.need),
                    waiting_for=sorted(p.ledger.waiting_for),
                    finished=p.ledger.is_finished(),
                    in_safe_state=p.ledger.in_safe_state,
                    deadlock_detected=p.ledger.deadlock_detected,
                )
                for p in self.processes
            ]
            return SystemStateSnapshot(
                step=self.current_step,
                resource_types=list(rt.names),
                available=self.available,
                total=rt.to_dict(self.total_resources()),
                processes=processes,
                is_safe=is_safe,
                safe_sequence=list(self.last_safe_sequence),
                deadlock_detected=any(p.ledger.deadlock_detected for p in self.processes),
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _as_vector(self, amounts: ResourceAmounts, require_all: bool = False) -> np.ndarray:
        if isinstance(amounts, Mapping):
            return self.resource_types.vector(amounts, require_all=require_all)
        vector = np.asarray(amounts)
        if vector.dtype.kind not in "iu":
            raise ValueError(f"Amounts must be integers, got {amounts!r}")
        if vector.shape != (len(self.resource_types),):
            raise ValueError(f"Expected {len(self.resource_types)} amounts, got shape {vector.shape}")
        return vector.astype(int)

    def _describe(self, amounts: np.ndarray) -> Dict[str, int]:
        return {name: int(amounts[i]) for i, name in enumerate(self.resource_types.names) if amounts[i]}

    def _refresh_verdicts(self) -> None:
        """Re-run the safety check and re-evaluate any deadlock flags still set."""
        self.is_safe_state()
        if any(p.ledger.deadlock_detected for p in self.processes):
            detection.detect_deadlock(self._available, self.processes)

    def _check_ledger(self, process: ProcessDescriptor) -> None:
        if process.ledger is None:
            raise ValueError(f"{process.name} has no resource ledger")
        if process.ledger.resource_types != self.resource_types:
            raise ValueError(
                f"{process.name} ledger uses resource types {process.ledger.resource_types.names}, "
                f"expected {self.resource_types.names}"
            )

    def _is_live(self, process: ProcessDescriptor) -> bool:
        return any(p is process for p in self.processes)

    def _save_state(self, process: ProcessDescriptor) -> Dict:
        """Everything a failed operation must put back."""
        return {
            'available': self._available.copy(),
            'ledger': process.ledger.snapshot(),
            'state': process.state,
            'safe_flags': {p.pid: p.ledger.in_safe_state for p in self.processes},
            'last_safe': self.last_safe,
            'last_safe_sequence': list(self.last_safe_sequence),
        }

    def _restore_state(self, process: ProcessDescriptor, saved: Dict) -> None:
        self._available = saved['available'].copy()
        process.ledger.restore(saved['ledger'])
        process.state = saved['state']
        for p in self.processes:
            p.ledger.in_safe_state = saved['safe_flags'].get(p.pid, p.ledger.in_safe_state)
        self.last_safe = saved['last_safe']
        self.last_safe_sequence = saved['last_safe_sequence']

    def _deny(self, process: ProcessDescriptor, request, reason: str) -> bool:
        shown = dict(request) if isinstance(request, Mapping) else request
        self.logger.log_request(self.current_step, process.name, shown, False, reason)
        self._emit(EventType.DENIAL, process, f"Denied {shown}",
                   resources=shown if isinstance(shown, dict) else None, reason=reason)
        return False

    def _reject_release(self, process: ProcessDescriptor, release, reason: str) -> bool:
        self.logger.log_step(self.current_step, f"{process.name} cannot release {release}: {reason}", "warning")
        return False

    def _reject_add(self, process: ProcessDescriptor, reason: str) -> bool:
        self.logger.log_step(self.current_step, f"Cannot add process {process.name}: {reason}", "warning")
        return False

    def _report_violation(self, process: ProcessDescriptor, error: LedgerInconsistencyError) -> None:
        self.logger.log_step(self.current_step, str(error), "error")
        self._emit(EventType.LEDGER_VIOLATION, process, str(error))

    def _emit(
        self,
        event_type: EventType,
        process: Optional[ProcessDescriptor],
        message: str,
        resources: Optional[Dict[str, int]] = None,
        reason: str = ""
    ) -> None:
        self.event_log.add(SimulationEvent(
            step=self.current_step,
            event_type=event_type,
            process_id=process.pid if process else -1,
            resources=resources,
            message=message,
            reason=reason
        ))
