"""
Data models for scheduled tasks and their runs.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, List, Optional, Union

from taskscheduler.errors import InvalidScheduleError


def format_id(task_id: int) -> str:
    """Format a numeric task identity as a registry key."""
    return str(task_id)


@dataclass
class Task:
    """A schedulable unit of work"""
    id: int = 0
    command: str = ""
    name: Optional[str] = None
    schedule: Optional[str] = None  # cron expression, cron tasks only

    @property
    def key(self) -> str:
        return format_id(self.id)

    @property
    def label(self) -> str:
        """Name used in logs and as the APScheduler job name."""
        return self.name or self.key


class IntervalUnit(str, Enum):
    SECOND = "second"
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"


@dataclass
class IntervalSchedule:
    """
    Fixed-period schedule.

    Attributes:
        unit: One of second, minute, hour, day (enum member or plain string)
        value: Number of units between firings, must be positive
        run_immediately: Fire once at registration time as well
    """
    unit: Union[IntervalUnit, str]
    value: int
    run_immediately: bool = True

    def __post_init__(self):
        try:
            self.unit = IntervalUnit(self.unit)
        except ValueError:
            allowed = ", ".join(u.value for u in IntervalUnit)
            raise InvalidScheduleError(
                f"Invalid interval unit '{self.unit}' (expected one of: {allowed})"
            ) from None

        if isinstance(self.value, bool) or not isinstance(self.value, int) or self.value <= 0:
            raise InvalidScheduleError(
                f"Interval value must be a positive integer, got {self.value!r}"
            )
        try:
            self.to_timedelta()
        except OverflowError:
            raise InvalidScheduleError(f"Interval {self} is too long") from None

    def to_timedelta(self) -> timedelta:
        return timedelta(**{f"{self.unit.value}s": self.value})

    def trigger_kwargs(self) -> dict:
        """Keyword arguments for APScheduler's IntervalTrigger."""
        return {f"{self.unit.value}s": self.value}

    def __str__(self):
        suffix = "" if self.value == 1 else "s"
        return f"every {self.value} {self.unit.value}{suffix}"


@dataclass
class TaskCallbacks:
    """
    Lifecycle callbacks for a single command run.

    on_start(process, start_time) and on_end(process, end_time, elapsed_seconds)
    receive the RunningProcess of the run. on_error(message) receives text.
    """
    on_start: Optional[Callable[[Any, datetime], None]] = None
    on_end: Optional[Callable[[Any, datetime, float], None]] = None
    on_error: Optional[Callable[[str], None]] = None


class FaultKind(str, Enum):
    SPAWN = "spawn"
    RUNTIME_OUTPUT = "runtime_output"
    BUFFER_OVERFLOW = "buffer_overflow"
    INTERNAL = "internal"


# Faults after which the run is not considered successful
TERMINAL_FAULTS = (FaultKind.SPAWN, FaultKind.BUFFER_OVERFLOW, FaultKind.INTERNAL)


@dataclass
class Fault:
    """A failure observed while running a command"""
    kind: FaultKind
    message: str


@dataclass
class RunResult:
    """
    Outcome of one command run.

    Always returned by ProcessRunner.run, failures included. The faults list
    holds everything that went wrong, in the order it was observed.
    """
    command: str
    pid: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    elapsed_seconds: Optional[float] = None
    returncode: Optional[int] = None
    output: str = ""
    faults: List[Fault] = field(default_factory=list)

    @property
    def started(self) -> bool:
        return self.pid is not None

    @property
    def error_output(self) -> str:
        return "".join(
            f.message for f in self.faults if f.kind == FaultKind.RUNTIME_OUTPUT
        )

    def has_fault(self, kind: FaultKind) -> bool:
        return any(f.kind == kind for f in self.faults)

    @property
    def ok(self) -> bool:
        if self.returncode != 0:
            return False
        return not any(f.kind in TERMINAL_FAULTS for f in self.faults)

    def to_dict(self) -> dict:
        return {
            'command': self.command,
            'pid': self.pid,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'elapsed_seconds': self.elapsed_seconds,
            'returncode': self.returncode,
            'status': 'success' if self.ok else 'failed',
            'faults': [{'kind': f.kind.value, 'message': f.message} for f in self.faults],
        }
