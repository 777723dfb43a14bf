"""
Progress reporting and run bookkeeping.

Walks, builds and restores report through a ProgressSink: a fraction of work
done plus discrete info/warning/success/error lines. RunLog is the standard
sink; it keeps an ordered, timestamped record of a run and forwards every
line to the "treevault.run" logger.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime

run_logger = logging.getLogger("treevault.run")


class ProgressSink(ABC):
    """Receives progress events from a backup or restore run."""

    @abstractmethod
    def progress(self, fraction: float) -> None:
        """Report completed work as a fraction between 0 and 1."""

    @abstractmethod
    def info(self, message: str) -> None:
        pass

    @abstractmethod
    def warning(self, message: str) -> None:
        pass

    @abstractmethod
    def success(self, message: str) -> None:
        pass

    @abstractmethod
    def error(self, message: str) -> None:
        pass


class NullSink(ProgressSink):
    """Sink that discards every event."""

    def progress(self, fraction: float) -> None:
        pass

    def info(self, message: str) -> None:
        pass

    def warning(self, message: str) -> None:
        pass

    def success(self, message: str) -> None:
        pass

    def error(self, message: str) -> None:
        pass


@dataclass(frozen=True)
class LogEntry:
    """One line of a run log."""

    timestamp: datetime
    level: str
    message: str

    def format(self) -> str:
        return f"[{self.timestamp.strftime('%H:%M:%S')}] {self.message}"


class RunLog(ProgressSink):
    """
    Ordered, timestamped record of a run.

    Every line is kept in `entries` and also emitted through logging, so a
    CLI run shows the same lines a caller can inspect afterwards.

    Attributes:
        entries: Log lines in the order they were reported.
        fractions: Every progress fraction reported.
    """

    _LOG_LEVELS = {
        "info": logging.INFO,
        "success": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }

    def __init__(self) -> None:
        self.entries: list[LogEntry] = []
        self.fractions: list[float] = []

    def progress(self, fraction: float) -> None:
        self.fractions.append(fraction)
        run_logger.debug(f"Progress: {fraction:.0%}")

    def info(self, message: str) -> None:
        self._append("info", message)

    def warning(self, message: str) -> None:
        self._append("warning", message)

    def success(self, message: str) -> None:
        self._append("success", message)

    def error(self, message: str) -> None:
        self._append("error", message)

    @property
    def last(self) -> LogEntry | None:
        """The most recent log line, if any."""
        return self.entries[-1] if self.entries else None

    def messages(self, level: str | None = None) -> list[str]:
        """Return logged messages, optionally only those of one level."""
        return [e.message for e in self.entries if level is None or e.level == level]

    def clear(self) -> None:
        self.entries.clear()
        self.fractions.clear()

    def _append(self, level: str, message: str) -> None:
        self.entries.append(LogEntry(datetime.now(UTC), level, message))
        run_logger.log(self._LOG_LEVELS[level], message)


@dataclass(frozen=True)
class FileFailure:
    """A file that could not be fetched or restored."""

    path: str
    message: str


@dataclass
class OperationTally:
    """
    Success and failure counts accumulated over one run.

    Attributes:
        succeeded: Number of files processed successfully.
        failures: Every failed file with its error message.
    """

    succeeded: int = 0
    failures: list[FileFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed

    def record_success(self) -> None:
        self.succeeded += 1

    def record_failure(self, path: str, message: str) -> None:
        self.failures.append(FileFailure(path, message))

    def summary(self) -> str:
        return f"{self.succeeded} succeeded, {self.failed} failed"
