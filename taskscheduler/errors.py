"""
Exceptions raised by the task scheduler.

Only registration-time and configuration problems are raised. Failures of a
running command are reported as Fault records on its RunResult instead.
"""


class SchedulerError(Exception):
    """Base class for task scheduler errors."""
    pass


class InvalidScheduleError(SchedulerError, ValueError):
    """Raised when a cron expression or interval schedule cannot be used."""
    pass


class ConfigError(SchedulerError):
    """Raised when the configuration file cannot be loaded."""
    pass
