"""
Scheduler configuration management.

Handles loading, saving, and validating the scheduler configuration:
runner settings (shell, environment, output ceiling), APScheduler settings,
logging, and the tasks to register at startup.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from taskscheduler.errors import ConfigError, InvalidScheduleError
from taskscheduler.models import IntervalSchedule, Task
from taskscheduler.runner import DEFAULT_MAX_OUTPUT_BYTES, DEFAULT_SHELL
from taskscheduler.triggers import parse_cron_expression

load_dotenv()

logger = logging.getLogger(__name__)

ENV_CONFIG_PATH = "TASK_SCHEDULER_CONFIG"
ENV_DATA_DIR = "TASK_SCHEDULER_DATA_DIR"


def get_data_dir() -> Path:
    """Get the data directory for scheduler files."""
    data_dir = os.environ.get(ENV_DATA_DIR)
    if data_dir:
        return Path(data_dir).expanduser()
    return Path.home() / ".task_scheduler"


def _get_default_log_file() -> str:
    """Get default log file path from environment or default."""
    if os.environ.get('TASK_SCHEDULER_LOG_DIR'):
        return str(Path(os.environ['TASK_SCHEDULER_LOG_DIR']).expanduser() / "scheduler.log")
    return str(get_data_dir() / "logs" / "scheduler.log")


@dataclass
class RunnerConfig:
    """Process execution settings."""
    shell: str = DEFAULT_SHELL
    working_dir: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES


@dataclass
class ExecutionConfig:
    """APScheduler settings."""
    max_workers: int = 20
    max_instances: int = 16  # Overlapping runs allowed per task
    misfire_grace_time: int = 60  # Seconds a late run may still start
    coalesce: bool = True  # Combine multiple missed runs into one
    timezone: Optional[str] = None  # None = local timezone


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: str = None  # Set dynamically in __post_init__
    max_bytes: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5

    def __post_init__(self):
        if self.file is None:
            self.file = _get_default_log_file()


@dataclass
class TaskConfig:
    """
    A task declared in the configuration file.

    Exactly one of cron or interval is set. interval holds
    {"unit": ..., "value": ..., "run_immediately": ...}.
    """
    id: int
    command: str
    name: Optional[str] = None
    enabled: bool = True
    cron: Optional[str] = None
    interval: Optional[Dict[str, Any]] = None

    @property
    def kind(self) -> str:
        return "cron" if self.cron is not None else "interval"

    def to_task(self) -> Task:
        return Task(id=self.id, command=self.command, name=self.name, schedule=self.cron)

    def interval_schedule(self) -> IntervalSchedule:
        """Build the IntervalSchedule for an interval task."""
        data = self.interval or {}
        try:
            return IntervalSchedule(
                unit=data['unit'],
                value=data['value'],
                run_immediately=data.get('run_immediately', True)
            )
        except KeyError as e:
            raise InvalidScheduleError(f"Interval schedule is missing {e}") from None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None}


class SchedulerConfig:
    """
    Scheduler configuration manager.

    Loads and manages scheduler configuration from a JSON file,
    with support for validation and defaults.

    Configuration path priority:
    1. Explicit config_path argument
    2. TASK_SCHEDULER_CONFIG environment variable
    3. Default: ~/.task_scheduler/config.json
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize scheduler configuration.

        Args:
            config_path: Path to configuration file. If None, uses env var or default.
        """
        if config_path:
            self.config_path = Path(config_path).expanduser()
        elif os.environ.get(ENV_CONFIG_PATH):
            self.config_path = Path(os.environ[ENV_CONFIG_PATH]).expanduser()
        else:
            self.config_path = get_data_dir() / "config.json"

        self.runner = RunnerConfig()
        self.execution = ExecutionConfig()
        self.logging = LoggingConfig()
        self.tasks: List[TaskConfig] = []

        if self.config_path.exists():
            self.load()
        else:
            logger.info(f"No config found at {self.config_path}, using defaults")

    def load(self):
        """Load configuration from JSON file."""
        try:
            with open(self.config_path, 'r') as f:
                data = json.load(f)

            if 'runner' in data:
                self.runner = RunnerConfig(**data['runner'])
            if 'scheduler' in data:
                self.execution = ExecutionConfig(**data['scheduler'])
            if 'logging' in data:
                self.logging = LoggingConfig(**data['logging'])

            self.tasks = []
            for task_data in data.get('tasks', []):
                self.tasks.append(TaskConfig(
                    id=task_data['id'],
                    command=task_data['command'],
                    name=task_data.get('name'),
                    enabled=task_data.get('enabled', True),
                    cron=task_data.get('cron'),
                    interval=task_data.get('interval')
                ))

            logger.info(f"Loaded {len(self.tasks)} task(s) from {self.config_path}")

        except (OSError, ValueError, TypeError, KeyError) as e:
            logger.error(f"Failed to load config from {self.config_path}: {e}")
            raise ConfigError(f"Failed to load config from {self.config_path}: {e}") from e

    def save(self):
        """Save configuration to JSON file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            'runner': asdict(self.runner),
            'scheduler': asdict(self.execution),
            'logging': asdict(self.logging),
            'tasks': [task.to_dict() for task in self.tasks]
        }

        with open(self.config_path, 'w') as f:
            json.dump(data, f, indent=2)

        logger.info(f"Saved configuration to {self.config_path}")

    def get_enabled_tasks(self) -> List[TaskConfig]:
        """Get list of enabled tasks."""
        return [t for t in self.tasks if t.enabled]

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if self.runner.max_output_bytes <= 0:
            errors.append("runner: 'max_output_bytes' must be positive")
        if not self.runner.shell:
            errors.append("runner: 'shell' cannot be empty")
        if self.execution.max_workers <= 0:
            errors.append("scheduler: 'max_workers' must be positive")
        if self.execution.max_instances <= 0:
            errors.append("scheduler: 'max_instances' must be positive")

        seen = set()
        for task in self.tasks:
            label = f"Task {task.id}" + (f" ({task.name})" if task.name else "")

            if not task.command or not task.command.strip():
                errors.append(f"{label}: 'command' cannot be empty")

            if (task.cron is None) == (task.interval is None):
                errors.append(f"{label}: exactly one of 'cron' or 'interval' is required")
                continue

            if (task.kind, task.id) in seen:
                errors.append(f"{label}: duplicate {task.kind} task id")
            seen.add((task.kind, task.id))

            try:
                if task.kind == "cron":
                    parse_cron_expression(task.cron)
                else:
                    task.interval_schedule()
            except InvalidScheduleError as e:
                errors.append(f"{label}: {e}")

        return errors

    def __repr__(self):
        return f"SchedulerConfig(tasks={len(self.tasks)}, path={self.config_path})"
