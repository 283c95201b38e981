"""
Task scheduler service built on APScheduler.

TaskScheduler is the entry point: it owns the cron and interval registries,
delegates command execution to a ProcessRunner, and logs every create and
cancel operation. Failing tasks never stop the scheduler; only invalid
schedules raise, at registration time.
"""

import logging
import signal
import sys
from typing import Any, Dict, List, Optional

from apscheduler.events import (
    EVENT_JOB_ADDED,
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MAX_INSTANCES,
    EVENT_JOB_MISSED,
    EVENT_JOB_REMOVED,
)
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler

from taskscheduler.config import SchedulerConfig, TaskConfig
from taskscheduler.errors import InvalidScheduleError
from taskscheduler.models import IntervalSchedule, RunResult, Task, TaskCallbacks, format_id
from taskscheduler.registry import CronTriggerRegistry, IntervalTriggerRegistry
from taskscheduler.runner import ProcessRunner

logger = logging.getLogger(__name__)


def build_runner(config: SchedulerConfig) -> ProcessRunner:
    """Create a ProcessRunner from the runner section of the configuration."""
    return ProcessRunner(
        shell=config.runner.shell,
        working_dir=config.runner.working_dir,
        env=config.runner.env,
        max_output_bytes=config.runner.max_output_bytes
    )


class TaskScheduler:
    """
    Scheduler facade managing cron and interval tasks.

    Tasks are identified by their numeric id; the cron and interval
    registries are independent, so one id may be registered in both.
    """

    def __init__(
        self,
        config: Optional[SchedulerConfig] = None,
        runner: Optional[ProcessRunner] = None,
        scheduler: Optional[BaseScheduler] = None,
        foreground: bool = False
    ):
        """
        Initialize the task scheduler.

        Args:
            config: Scheduler configuration (loaded from the default path if None)
            runner: Process runner (built from config if None)
            scheduler: Pre-built APScheduler scheduler (built from config if None)
            foreground: If True, use a blocking scheduler (for foreground mode)
        """
        self.config = config or SchedulerConfig()
        self.runner = runner or build_runner(self.config)
        self.scheduler = scheduler or self._build_scheduler(foreground)

        self.cron = CronTriggerRegistry(self.scheduler, self.runner)
        self.interval = IntervalTriggerRegistry(self.scheduler, self.runner)

        self._setup_event_listeners()

        logger.info(
            f"Task scheduler initialized (shell: {self.runner.shell}, "
            f"max output: {self.runner.max_output_bytes} bytes)"
        )

    def _build_scheduler(self, foreground: bool) -> BaseScheduler:
        execution = self.config.execution

        jobstores = {
            'default': MemoryJobStore()
        }

        executors = {
            'default': ThreadPoolExecutor(execution.max_workers)
        }

        job_defaults = {
            'coalesce': execution.coalesce,
            'max_instances': execution.max_instances,
            'misfire_grace_time': execution.misfire_grace_time
        }

        options = {}
        if execution.timezone:
            options['timezone'] = execution.timezone

        scheduler_cls = BlockingScheduler if foreground else BackgroundScheduler
        return scheduler_cls(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            **options
        )

    def _setup_event_listeners(self):
        """Setup APScheduler event listeners for logging."""

        def job_executed_listener(event):
            result = event.retval
            if isinstance(result, RunResult):
                logger.info(
                    f"Job '{event.job_id}' finished "
                    f"(status: {'success' if result.ok else 'failed'}, "
                    f"returncode: {result.returncode}, elapsed: {result.elapsed_seconds})"
                )
            else:
                logger.info(f"Job '{event.job_id}' executed")

        def job_error_listener(event):
            logger.error(
                f"Job '{event.job_id}' raised exception: {event.exception}",
                exc_info=(type(event.exception), event.exception, event.exception.__traceback__)
            )

        def job_missed_listener(event):
            logger.warning(f"Job '{event.job_id}' missed scheduled run time")

        def job_max_instances_listener(event):
            logger.warning(f"Job '{event.job_id}' skipped a run: too many instances running")

        def job_added_listener(event):
            logger.debug(f"Job '{event.job_id}' added to scheduler")

        def job_removed_listener(event):
            logger.debug(f"Job '{event.job_id}' removed from scheduler")

        self.scheduler.add_listener(job_executed_listener, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)
        self.scheduler.add_listener(job_missed_listener, EVENT_JOB_MISSED)
        self.scheduler.add_listener(job_max_instances_listener, EVENT_JOB_MAX_INSTANCES)
        self.scheduler.add_listener(job_added_listener, EVENT_JOB_ADDED)
        self.scheduler.add_listener(job_removed_listener, EVENT_JOB_REMOVED)

    def install_signal_handlers(self):
        """Shut down gracefully on SIGINT/SIGTERM."""

        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, shutting down...")
            self.shutdown(wait=False)
            sys.exit(0)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    # Cron tasks

    def create_cron_task(self, task: Task, callbacks: Optional[TaskCallbacks] = None):
        """
        Register a task fired on task.schedule (a cron expression).

        Raises:
            InvalidScheduleError: If the cron expression is invalid
        """
        self.cron.create(task, callbacks)

    def cancel_cron_task(self, task: Task) -> bool:
        """Stop future firings of a cron task. Unknown ids are ignored."""
        removed = self.cron.cancel(task)
        logger.info(
            f"[cancel cron task] id: {format_id(task.id)}, name: {task.name}, "
            f"{'cancelled' if removed else 'not registered'}"
        )
        return removed

    # Interval tasks

    def create_interval_task(
        self,
        task: Task,
        schedule: IntervalSchedule,
        callbacks: Optional[TaskCallbacks] = None
    ):
        """
        Register a task fired every schedule period.

        Raises:
            InvalidScheduleError: If the schedule is invalid
        """
        self.interval.create(task, schedule, callbacks)

    def cancel_interval_task(self, task: Task) -> bool:
        """Stop future firings of an interval task. Unknown ids are ignored."""
        removed = self.interval.cancel(task)
        logger.info(
            f"[cancel interval task] id: {format_id(task.id)}, name: {task.name}, "
            f"{'cancelled' if removed else 'not registered'}"
        )
        return removed

    # Configuration

    def add_task_from_config(self, task_config: TaskConfig):
        """
        Register a task declared in the configuration file.

        Raises:
            InvalidScheduleError: If the task's schedule is invalid
        """
        task = task_config.to_task()
        if task_config.kind == "cron":
            self.create_cron_task(task)
        else:
            self.create_interval_task(task, task_config.interval_schedule())

    def load_tasks_from_config(self) -> int:
        """
        Register every enabled task from the configuration.

        Invalid tasks are logged and skipped.

        Returns:
            Number of tasks registered
        """
        enabled_tasks = self.config.get_enabled_tasks()
        logger.info(f"Loading {len(enabled_tasks)} enabled task(s) from configuration")

        loaded = 0
        for task_config in enabled_tasks:
            try:
                self.add_task_from_config(task_config)
                loaded += 1
            except InvalidScheduleError as e:
                logger.error(f"Failed to load task {task_config.id} ({task_config.name}): {e}")
        return loaded

    # Introspection

    def _registry(self, kind: str):
        if kind == self.cron.kind:
            return self.cron
        if kind == self.interval.kind:
            return self.interval
        raise ValueError(f"Unknown task kind: {kind}")

    def get_last_result(self, kind: str, task_id: int) -> Optional[RunResult]:
        """Get the most recent RunResult of a task ('cron' or 'interval')."""
        return self._registry(kind).get_last_result(task_id)

    def get_tasks(self) -> List[Dict[str, Any]]:
        """
        Get list of all registered tasks.

        Returns:
            List of task information dictionaries
        """
        tasks = []
        for registry in (self.cron, self.interval):
            for key in registry.keys():
                job = self.scheduler.get_job(registry.job_id(key))
                if job is None:
                    continue
                next_run = getattr(job, 'next_run_time', None)
                tasks.append({
                    'kind': registry.kind,
                    'id': key,
                    'name': job.name,
                    'next_run': next_run.isoformat() if next_run else None,
                    'trigger': str(job.trigger)
                })
        return tasks

    # Lifecycle

    def start(self):
        """Start the scheduler. Blocks when running a foreground scheduler."""
        if self.scheduler.running:
            logger.warning("Scheduler is already running")
            return

        logger.info("Starting scheduler...")
        tasks = self.get_tasks()
        if tasks:
            logger.info(f"Starting with {len(tasks)} task(s):")
            for task in tasks:
                logger.info(f"  - {task['kind']}:{task['id']} ({task['name']}): {task['trigger']}")
        else:
            logger.warning("No tasks registered")
        self.scheduler.start()

    def shutdown(self, wait: bool = True):
        """
        Cancel all triggers and stop the scheduler.

        Args:
            wait: If True, wait for running tasks to complete
        """
        cancelled = self.cron.cancel_all() + self.interval.cancel_all()
        logger.info(f"Cancelled {cancelled} trigger(s)")

        if self.scheduler.running:
            logger.info("Stopping scheduler...")
            self.scheduler.shutdown(wait=wait)
            logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        return self.scheduler.running
