#!/usr/bin/env python3
"""
Basic Usage Examples for TaskScheduler

Registers a cron task and an interval task, prints their lifecycle events
for a few seconds, then shuts down.
"""

import logging
import sys
import time
from pathlib import Path

# Add parent directory to path for imports (if running as standalone script)
sys.path.insert(0, str(Path(__file__).parent.parent))

from taskscheduler import IntervalSchedule, Task, TaskCallbacks, TaskScheduler


def print_callbacks(label: str) -> TaskCallbacks:
    return TaskCallbacks(
        on_start=lambda process, start_time: print(f"[{label}] started pid {process.pid} at {start_time:%H:%M:%S}"),
        on_end=lambda process, end_time, elapsed: print(f"[{label}] finished in {elapsed:.2f}s"),
        on_error=lambda message: print(f"[{label}] error: {message.strip()}")
    )


def main():
    logging.basicConfig(level=logging.INFO)

    scheduler = TaskScheduler()
    scheduler.start()

    # Every 5 seconds (six-field cron with a leading seconds field)
    scheduler.create_cron_task(
        Task(id=1, name="clock", command="date", schedule="*/5 * * * * *"),
        print_callbacks("clock")
    )

    # Every 3 seconds, first run right away; writes to stderr on purpose
    scheduler.create_interval_task(
        Task(id=1, name="noisy", command="echo warming up >&2; sleep 1"),
        IntervalSchedule("second", 3, run_immediately=True),
        print_callbacks("noisy")
    )

    try:
        time.sleep(12)
    finally:
        scheduler.shutdown()


if __name__ == "__main__":
    main()
