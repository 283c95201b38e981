"""
Task Scheduler

Runs shell commands on cron and interval schedules using APScheduler.

Features:
- Cron tasks (5 or 6 field expressions) and fixed-interval tasks
- Tasks keyed by numeric id, cancellable at any time
- Lifecycle callbacks (start, error output, end) for every run
- Output ceiling per run; a failing command never stops the scheduler
"""

from taskscheduler.config import SchedulerConfig
from taskscheduler.errors import ConfigError, InvalidScheduleError, SchedulerError
from taskscheduler.models import (
    Fault,
    FaultKind,
    IntervalSchedule,
    IntervalUnit,
    RunResult,
    Task,
    TaskCallbacks,
    format_id,
)
from taskscheduler.runner import ProcessRunner, RunningProcess
from taskscheduler.service import TaskScheduler

__version__ = "0.1.0"
__all__ = [
    "TaskScheduler",
    "ProcessRunner",
    "RunningProcess",
    "SchedulerConfig",
    "Task",
    "TaskCallbacks",
    "IntervalSchedule",
    "IntervalUnit",
    "RunResult",
    "Fault",
    "FaultKind",
    "format_id",
    "SchedulerError",
    "InvalidScheduleError",
    "ConfigError",
]
