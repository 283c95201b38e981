"""
Trigger registries mapping task identities to APScheduler jobs.

The cron and interval registries are separate keyspaces: each prefixes its
APScheduler job ids with its kind, so the same task id can be registered in
both at once. Registering an id that already has a trigger in the same
registry replaces the previous trigger.
"""

import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler

from taskscheduler.models import IntervalSchedule, RunResult, Task, TaskCallbacks, format_id
from taskscheduler.runner import ProcessRunner
from taskscheduler.triggers import build_interval_trigger, parse_cron_expression

logger = logging.getLogger(__name__)


class TriggerRegistry:
    """
    Base registry: owns the identity -> job map for one trigger kind.

    APScheduler runs jobs on a thread pool, so the map is guarded by a lock.
    """

    kind = "task"

    def __init__(self, scheduler: BaseScheduler, runner: ProcessRunner):
        self.scheduler = scheduler
        self.runner = runner
        self._jobs: Dict[str, Job] = {}
        self._last_results: Dict[str, RunResult] = {}
        self._lock = threading.RLock()

    def job_id(self, key: str) -> str:
        """APScheduler job id for a registry key."""
        return f"{self.kind}:{key}"

    def _register(self, task: Task, trigger, callbacks: Optional[TaskCallbacks], **job_kwargs) -> Job:
        key = format_id(task.id)
        with self._lock:
            if key in self._jobs:
                logger.warning(f"[{self.kind}] Task {key} is already registered, replacing it")
                self._remove(key)

            job = self.scheduler.add_job(
                self._fire,
                trigger=trigger,
                id=self.job_id(key),
                name=task.label,
                kwargs={'task': task, 'callbacks': callbacks},
                replace_existing=True,
                **job_kwargs
            )
            self._jobs[key] = job
            return job

    def _remove(self, key: str) -> bool:
        job = self._jobs.pop(key, None)
        self._last_results.pop(key, None)
        if job is None:
            return False
        try:
            self.scheduler.remove_job(job.id)
        except JobLookupError:
            logger.debug(f"[{self.kind}] Job '{job.id}' was already gone from the scheduler")
        return True

    def cancel(self, task: Task) -> bool:
        """
        Stop future firings of a task.

        Returns:
            True if a trigger was removed, False if none was registered
        """
        key = format_id(task.id)
        with self._lock:
            return self._remove(key)

    def cancel_all(self) -> int:
        """Cancel every registered trigger, returning how many were removed."""
        with self._lock:
            keys = list(self._jobs)
            for key in keys:
                self._remove(key)
        return len(keys)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._jobs)

    def get_job(self, task_id: int) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(format_id(task_id))

    def get_last_result(self, task_id: int) -> Optional[RunResult]:
        with self._lock:
            return self._last_results.get(format_id(task_id))

    def _fire(self, task: Task, callbacks: Optional[TaskCallbacks] = None) -> Optional[RunResult]:
        """Job function: run the task's command once."""
        try:
            result = self.runner.run(task.command, callbacks)
        except Exception as e:
            logger.error(
                f"[{self.kind}] Task {task.key} ({task.label}) failed at "
                f"{datetime.now().isoformat()}: {e}",
                exc_info=True
            )
            return None

        key = format_id(task.id)
        with self._lock:
            # A run that outlives its trigger leaves no result behind
            if key in self._jobs:
                self._last_results[key] = result
        if not result.ok:
            logger.error(
                f"[{self.kind}] Task {task.key} ({task.label}) run failed: "
                f"returncode={result.returncode}, faults={len(result.faults)}"
            )
        return result

    def __len__(self):
        with self._lock:
            return len(self._jobs)

    def __contains__(self, task_id) -> bool:
        with self._lock:
            return format_id(task_id) in self._jobs


class CronTriggerRegistry(TriggerRegistry):
    """Tasks fired on a cron expression."""

    kind = "cron"

    def create(self, task: Task, callbacks: Optional[TaskCallbacks] = None) -> Job:
        """
        Register a cron task.

        Raises:
            InvalidScheduleError: If task.schedule is not a valid cron expression
        """
        trigger = parse_cron_expression(task.schedule, timezone=self.scheduler.timezone)
        logger.info(
            f"[create cron task] id: {task.key}, cron: {task.schedule}, "
            f"name: {task.name}, command: {task.command}"
        )
        return self._register(task, trigger, callbacks)


class IntervalTriggerRegistry(TriggerRegistry):
    """Tasks fired on a fixed period."""

    kind = "interval"

    def create(
        self,
        task: Task,
        schedule: IntervalSchedule,
        callbacks: Optional[TaskCallbacks] = None
    ) -> Job:
        """
        Register an interval task.

        With schedule.run_immediately the first run is at registration time,
        otherwise one full period later.

        Raises:
            InvalidScheduleError: If schedule is not a valid IntervalSchedule
        """
        trigger = build_interval_trigger(schedule, timezone=self.scheduler.timezone)
        logger.info(
            f"[create interval task] id: {task.key}, interval: {schedule}, "
            f"name: {task.name}, command: {task.command}"
        )

        job_kwargs = {}
        if schedule.run_immediately:
            job_kwargs['next_run_time'] = datetime.now(self.scheduler.timezone)
        return self._register(task, trigger, callbacks, **job_kwargs)
