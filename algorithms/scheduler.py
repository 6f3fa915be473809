"""
Multi-level preemptive CPU scheduler for the Resource Control Simulator.

Each tick runs four phases in a fixed order:
1. Selection (termination, preemption, strategy choice)
2. Context switch (only removal point from the ready queues)
3. Execution of one burst
4. Post-execution reaction, then the anti-starvation sweep
"""

from threading import RLock
from typing import Deque, Dict, List, Optional, Tuple

from models.process import (
    PriorityLevel,
    ProcessDescriptor,
    ProcessState,
    SchedulingPolicy,
)
from algorithms.policies import new_ready_queue, strategy_for
from analysis.events import EventLog, EventType, SimulationEvent
from utils.logger import SimulatorLogger


DEFAULT_QUEUE_LEVELS = 5
STARVATION_THRESHOLD = 2000
DEFAULT_TIME_SPEED = 10


class Scheduler:
    """
    Multi-level queue scheduler.

    Attributes:
        ready_queues: FIFO ready queues, index 0 is the most urgent level
        current: Process holding the CPU, or None when idle
        last_process: Process that held the CPU before the last switch
        system_time: Simulated clock
        time_speed: Default budget of one tick
        starvation_threshold: Queue residency that triggers promotion
        finished: Terminated processes, in termination order
        context_switches: Number of context switches performed

    Invariants:
        A process is in at most one ready queue, and never in a ready queue
        while it is current or TERMINATED.
    """

    def __init__(
        self,
        queue_levels: int = DEFAULT_QUEUE_LEVELS,
        starvation_threshold: int = STARVATION_THRESHOLD,
        time_speed: int = DEFAULT_TIME_SPEED,
        logger: Optional[SimulatorLogger] = None,
        event_log: Optional[EventLog] = None
    ):
        self.ready_queues: List[Deque[ProcessDescriptor]] = [
            new_ready_queue() for _ in range(max(1, int(queue_levels)))
        ]
        self.current: Optional[ProcessDescriptor] = None
        self.last_process: Optional[ProcessDescriptor] = None
        self.system_time = 0
        self.time_speed = max(0, int(time_speed))
        self.starvation_threshold = starvation_threshold
        self.finished: List[ProcessDescriptor] = []
        self.context_switches = 0
        self.logger = logger or SimulatorLogger(echo=False)
        self.event_log = event_log if event_log is not None else EventLog()

        self._known: Dict[int, ProcessDescriptor] = {}
        self._cpu_context: Optional[Dict[str, int]] = None
        self._lock = RLock()

    @property
    def lowest_level(self) -> int:
        return len(self.ready_queues) - 1

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def admit(self, process: ProcessDescriptor) -> None:
        """
        Add a process to the ready queue matching its queue level.

        Out-of-range levels are clamped. Terminated processes are ignored.
        """
        with self._lock:
            if process.is_terminated():
                self._emit(EventType.ADMIT, process,
                           f"Ignoring admission of terminated process {process.name}", "warning")
                return
            if process is self.current:
                process.save_context(self._cpu_context or process.context)
                self.current = None
                self._cpu_context = None

            self._known[process.pid] = process
            process.scheduling.time_in_queue = 0
            level = self._enqueue(process)
            self._emit(EventType.ADMIT, process,
                       f"Added process {process.name} to ready queue level {level}")

    def tick(self, time_budget: Optional[int] = None) -> Optional[ProcessDescriptor]:
        """
        Advance the simulation by one scheduling decision.

        Args:
            time_budget: Time the CPU may run this tick (default: time_speed)

        Returns:
            Process occupying the CPU afterwards, or None if idle
        """
        with self._lock:
            budget = self.time_speed if time_budget is None else max(0, int(time_budget))

            self._refresh_priorities()
            next_process, yielded = self._select_next_process()
            if next_process is not self.current or yielded:
                self._context_switch(next_process)

            if self.current is not None:
                elapsed = self._execute(self.current, budget)
            else:
                elapsed = budget
                self.system_time += budget
                self._emit(EventType.IDLE, None, f"CPU idle for {budget}", "debug")

            self._update_queue_times(elapsed)
            return self.current

    def terminate(self, pid: int) -> bool:
        """
        Explicitly remove a process from the scheduler.

        Returns:
            False if the process is unknown or already terminated
        """
        with self._lock:
            process = self._known.get(pid)
            if process is None or process.is_terminated():
                self.logger.log(f"Process P{pid} not found", "warning")
                return False

            if process is self.current:
                process.save_context(self._cpu_context or process.context)
                self.last_process = process
                self.current = None
                self._cpu_context = None
            self._remove_from_ready_queues(process)
            self._finish(process, "removed")
            return True

    def change_priority(self, pid: int, priority: PriorityLevel) -> bool:
        """Change the static priority class of a live process."""
        with self._lock:
            process = self._known.get(pid)
            if process is None or process.is_terminated():
                self.logger.log(f"Process P{pid} not found", "warning")
                return False
            old = process.scheduling.static_priority
            process.scheduling.static_priority = priority
            process.scheduling.refresh_dynamic_priority()
            self._emit(EventType.PRIORITY_CHANGE, process,
                       f"{process.name} priority {old.name} -> {priority.name}")
            return True

    def ready_processes(self) -> List[ProcessDescriptor]:
        """All ready processes, by queue level then FIFO order."""
        with self._lock:
            return [p for queue in self.ready_queues for p in queue]

    def queue_snapshot(self) -> List[List[int]]:
        """PIDs per ready queue level."""
        with self._lock:
            return [[p.pid for p in queue] for queue in self.ready_queues]

    def get_process(self, pid: int) -> Optional[ProcessDescriptor]:
        return self._known.get(pid)

    def has_work(self) -> bool:
        """True while any admitted process is running or ready."""
        with self._lock:
            return self.current is not None or any(self.ready_queues)

    def status_lines(self) -> List[str]:
        """Human-readable scheduler status."""
        with self._lock:
            lines = [f"=== Scheduler Status at time {self.system_time} ==="]
            total = 0
            for level, queue in enumerate(self.ready_queues):
                lines.append(f"Queue Level {level} ({len(queue)} processes):")
                for index, process in enumerate(queue):
                    info = process.scheduling
                    lines.append(
                        f"  {index + 1}. {process.name} - DynPrio: {info.dynamic_priority}, "
                        f"Static: {info.static_priority.name}, Wait: {info.time_in_queue}"
                    )
                total += len(queue)
            lines.append(f"Total ready processes: {total}")
            if self.current is not None:
                info = self.current.scheduling
                lines.append(
                    f"Current Process: {self.current.name} (need {info.remaining_need_time}, "
                    f"slice {info.time_slice_remaining}/{info.time_slice})"
                )
            else:
                lines.append("Current Process: IDLE")
            return lines

    # ------------------------------------------------------------------
    # Tick phases
    # ------------------------------------------------------------------

    def _select_next_process(self) -> Tuple[Optional[ProcessDescriptor], bool]:
        """
        Phase 1: decide who should hold the CPU.

        Returns:
            (next process, whether the current process yielded)
        """
        current = self.current
        if current is not None:
            info = current.scheduling
            if info.remaining_need_time <= 0:
                self._finish(current, "completed")
                self.last_process = current
                next_process = self._find_highest_priority_process()
                if next_process is None:
                    self.current = None
                    self._cpu_context = None
                return next_process, False

            higher = self._has_higher_priority_process(current)
            if info.should_preempt(self.system_time, higher, current.policy.time_sliced):
                reason = "higher priority process ready" if (higher and info.preemptable) else "time slice expired"
                current.mark_for_reschedule()
                self._emit(EventType.PREEMPT, current, f"Preempting {current.name}", reason=reason)
                candidate = self._find_highest_priority_process()
                return (candidate if candidate is not None else current), True

            return current, False

        return self._find_highest_priority_process(), False

    def _context_switch(self, next_process: Optional[ProcessDescriptor]) -> None:
        """Phase 2: save the outgoing context and load the incoming one."""
        outgoing = self.current

        if outgoing is not None and not outgoing.is_terminated():
            outgoing.save_context(self._cpu_context or outgoing.context)
            info = outgoing.scheduling
            slice_expired = outgoing.policy.time_sliced and info.time_slice_expired
            if outgoing.needs_execution() and (slice_expired or info.needs_reschedule):
                self._enqueue(outgoing)
                self.logger.log_step(self.system_time,
                                     f"Saved context of {outgoing.name} and returned to ready queue", "debug")
            else:
                outgoing.state = ProcessState.BLOCKED
                self.logger.log_step(self.system_time, f"Saved context of {outgoing.name}", "debug")

        if outgoing is not None:
            self.last_process = outgoing

        if next_process is not None:
            self._remove_from_ready_queues(next_process)
            next_process.state = ProcessState.RUNNING
            self._cpu_context = next_process.load_context()
            next_process.scheduling.reset_time_slice()
            self.current = next_process
        else:
            self.current = None
            self._cpu_context = None

        self.context_switches += 1
        incoming_name = next_process.name if next_process else None
        outgoing_name = outgoing.name if outgoing else None
        self.logger.log_context_switch(self.system_time, outgoing_name, incoming_name)
        self.event_log.add(SimulationEvent(
            step=self.system_time,
            event_type=EventType.CONTEXT_SWITCH,
            process_id=next_process.pid if next_process else -1,
            message=f"{outgoing_name or 'IDLE'} -> {incoming_name or 'IDLE'}"
        ))

    def _execute(self, process: ProcessDescriptor, budget: int) -> int:
        """Phase 3 and 4: run one burst, then react to slice expiry."""
        self._simulate_registers()
        used = process.update_scheduling_stats(self.system_time, budget)
        self.system_time += used

        info = process.scheduling
        if info.remaining_need_time == 0 and info.completion_time is None:
            info.completion_time = self.system_time
        self._emit(EventType.EXECUTE, process,
                   f"Executed {process.name} for {used} (remaining need {info.remaining_need_time})")

        if info.time_slice_expired or info.needs_reschedule:
            self._handle_time_slice_expired(process)
        return used

    def _handle_time_slice_expired(self, process: ProcessDescriptor) -> None:
        self._emit(EventType.TIME_SLICE_EXPIRED, process,
                   f"Time slice expired for process {process.name}", "debug")

        if process.policy == SchedulingPolicy.MLFQ:
            if process.demote_priority(self.lowest_level):
                self._emit(EventType.DEMOTE, process,
                           f"Process {process.name} demoted to queue level {process.scheduling.queue_level}")
            process.mark_for_reschedule()
        elif process.policy == SchedulingPolicy.RR:
            pass
        else:
            process.scheduling.reset_time_slice()

    def _update_queue_times(self, elapsed: int) -> None:
        """Phase 5: age every ready process and promote starving ones."""
        for level, queue in enumerate(self.ready_queues):
            for process in list(queue):
                info = process.scheduling
                info.time_in_queue += elapsed
                info.total_wait_time += elapsed

                if level > 0 and info.time_in_queue > self.starvation_threshold:
                    queue.remove(process)
                    process.boost_priority()
                    self.ready_queues[info.queue_level].append(process)
                    self._emit(EventType.PROMOTE, process,
                               f"Anti-starvation: boosting {process.name} from queue level {level} "
                               f"to {info.queue_level}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _find_highest_priority_process(self) -> Optional[ProcessDescriptor]:
        """First non-empty queue, chosen by the policy of that queue's head."""
        for queue in self.ready_queues:
            if queue:
                return strategy_for(queue[0].policy).select(queue, self.current)
        return None

    def _has_higher_priority_process(self, current: ProcessDescriptor) -> bool:
        current_priority = current.scheduling.dynamic_priority
        return any(
            p.scheduling.dynamic_priority < current_priority
            for queue in self.ready_queues for p in queue
        )

    def _refresh_priorities(self) -> None:
        if self.current is not None:
            self.current.scheduling.refresh_dynamic_priority()
        for queue in self.ready_queues:
            for process in queue:
                process.scheduling.refresh_dynamic_priority()

    def _enqueue(self, process: ProcessDescriptor) -> int:
        """Append process to its (clamped) queue level, never twice."""
        self._remove_from_ready_queues(process)
        level = min(max(process.scheduling.queue_level, 0), self.lowest_level)
        process.scheduling.queue_level = level
        self.ready_queues[level].append(process)
        process.state = ProcessState.READY
        return level

    def _remove_from_ready_queues(self, process: ProcessDescriptor) -> None:
        for queue in self.ready_queues:
            if process in queue:
                queue.remove(process)

    def _finish(self, process: ProcessDescriptor, how: str) -> None:
        process.state = ProcessState.TERMINATED
        if process.scheduling.completion_time is None:
            process.scheduling.completion_time = self.system_time
        self.finished.append(process)
        self._known.pop(process.pid, None)
        self._emit(EventType.TERMINATE, process, f"Terminate process {process.name} ({how})")

    def _simulate_registers(self) -> None:
        if self._cpu_context is not None:
            self._cpu_context['program_counter'] = self._cpu_context.get('program_counter', 0) + 4
            self._cpu_context['accumulator'] = self._cpu_context.get('accumulator', 0) + 1

    def _emit(
        self,
        event_type: EventType,
        process: Optional[ProcessDescriptor],
        message: str,
        level: str = "info",
        reason: str = ""
    ) -> None:
        self.event_log.add(SimulationEvent(
            step=self.system_time,
            event_type=event_type,
            process_id=process.pid if process else -1,
            message=message,
            reason=reason
        ))
        text = f"{message} ({reason})" if reason else message
        self.logger.log_step(self.system_time, text, level)
