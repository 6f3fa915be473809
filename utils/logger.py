"""
Logger utility for the Resource Control Simulator.

Provides severity-tagged trace logging with verbosity control and an
optional file sink.
"""

from typing import Dict, List, Optional, Tuple
from datetime import datetime


LEVELS = ("debug", "info", "warning", "error")


class SimulatorLogger:
    """
    Logger for simulation events and decisions.

    Format: "Step X: P1 requests {A:1} - GRANTED/DENIED (reason)"

    Every emitted line is also kept in ``records`` as (level, message).
    """

    def __init__(self, verbose: bool = False, log_file: Optional[str] = None, echo: bool = True):
        """
        Initialize logger.

        Args:
            verbose: Emit debug messages
            log_file: Optional file path for logging
            echo: Print to the console
        """
        self.verbose = verbose
        self.log_file = log_file
        self.echo = echo
        self.file_handle = None
        self.records: List[Tuple[str, str]] = []

        if self.log_file:
            self.file_handle = open(self.log_file, 'w', encoding='utf-8')
            self._write_header()

    def _write_header(self) -> None:
        """Write log file header."""
        if self.file_handle:
            timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
            self.file_handle.write(f"Simulation Log - {timestamp}\n")
            self.file_handle.write("="*60 + "\n\n")

    def log(self, message: str, level: str = "info") -> None:
        """
        Log a message.

        Args:
            message: Message to log
            level: Log level (debug, info, warning, error)
        """
        if level not in LEVELS:
            raise ValueError(f"Unknown log level '{level}'")
        if level == "debug" and not self.verbose:
            return

        self.records.append((level, message))
        formatted = self._format_message(message, level)

        # Console output
        if self.echo:
            print(formatted)

        # File output
        if self.file_handle:
            self.file_handle.write(formatted + "\n")
            self.file_handle.flush()

    def _format_message(self, message: str, level: str) -> str:
        """Format message with level prefix."""
        if level == "error":
            return f"[ERROR] {message}"
        elif level == "warning":
            return f"[WARNING] {message}"
        elif level == "debug":
            return f"[DEBUG] {message}"
        else:
            return message

    def debug(self, message: str) -> None:
        self.log(message, "debug")

    def info(self, message: str) -> None:
        self.log(message, "info")

    def warning(self, message: str) -> None:
        self.log(message, "warning")

    def error(self, message: str) -> None:
        self.log(message, "error")

    def messages(self, level: Optional[str] = None) -> List[str]:
        """Recorded messages, optionally filtered by level."""
        return [m for lvl, m in self.records if level is None or lvl == level]

    def log_step(self, step: int, message: str, level: str = "info") -> None:
        """Log a simulation step message."""
        self.log(f"Step {step}: {message}", level)

    def log_request(
        self,
        step: int,
        name: str,
        request: Dict[str, int],
        granted: bool,
        reason: str
    ) -> None:
        """
        Log a resource request decision.

        Args:
            step: Current simulation step
            name: Process name
            request: Amounts requested by resource type
            granted: Whether request was granted
            reason: Reason for decision
        """
        status = "GRANTED" if granted else "DENIED"
        message = f"{name} requests {request} - {status} ({reason})"
        self.log_step(step, message, "info" if granted else "warning")

    def log_deadlock(self, step: int, deadlocked: list) -> None:
        """
        Log deadlock detection.

        Args:
            step: Current simulation step
            deadlocked: Names of processes in deadlock
        """
        message = f"DEADLOCK DETECTED - Processes in deadlock: [{', '.join(deadlocked)}]"
        self.log_step(step, message, "warning")

    def log_context_switch(self, step: int, outgoing: Optional[str], incoming: Optional[str]) -> None:
        """Log a context switch between two processes (None = idle)."""
        self.log_step(step, f"Context switch {outgoing or 'IDLE'} -> {incoming or 'IDLE'}")

    def log_system_state(self, step: int, state_str: str) -> None:
        """
        Log system state snapshot.

        Args:
            step: Current simulation step
            state_str: Formatted system state
        """
        if self.verbose:
            self.log_step(step, f"System State:\n{state_str}")

    def close(self) -> None:
        """Close log file if open."""
        if self.file_handle:
            self.file_handle.close()
            self.file_handle = None

    def __del__(self):
        """Cleanup on destruction."""
        self.close()
