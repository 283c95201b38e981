"""
Command-line interface for the task scheduler.

Provides commands for:
- Running the scheduler in the foreground with the configured tasks
- Running a single command through the process runner
- Validating, initializing and showing the configuration
"""

import argparse
import logging
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from taskscheduler.config import SchedulerConfig
from taskscheduler.errors import ConfigError
from taskscheduler.models import FaultKind, TaskCallbacks
from taskscheduler.service import TaskScheduler, build_runner

logger = logging.getLogger(__name__)


def setup_logging(log_file: str = None, verbose: bool = False, max_bytes: int = 10 * 1024 * 1024,
                  backup_count: int = 5):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_formatter = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # File handler
    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count)
        file_handler.setLevel(level)
        file_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)


def _load_config(args) -> SchedulerConfig:
    try:
        return SchedulerConfig(args.config)
    except ConfigError as e:
        logger.error(str(e))
        sys.exit(1)


def cmd_start(args):
    """Run the scheduler in the foreground."""
    config = _load_config(args)
    setup_logging(
        log_file=args.log_file or config.logging.file,
        verbose=args.verbose,
        max_bytes=config.logging.max_bytes,
        backup_count=config.logging.backup_count
    )

    errors = config.validate()
    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        sys.exit(1)

    if args.workers:
        config.execution.max_workers = args.workers

    service = TaskScheduler(config=config)
    service.install_signal_handlers()
    service.load_tasks_from_config()

    logger.info("Running in foreground mode. Press Ctrl+C to stop.")
    service.start()
    try:
        while service.is_running():
            time.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
        service.shutdown()


def cmd_run_once(args):
    """Run a command once through the process runner."""
    setup_logging(verbose=args.verbose)
    config = _load_config(args)
    runner = build_runner(config)

    logger.info(f"Running command: {args.command}")
    callbacks = TaskCallbacks(
        on_start=lambda process, start_time: logger.info(f"Started pid {process.pid}"),
        on_error=lambda message: logger.warning(message.rstrip())
    )
    result = runner.run(args.command, callbacks)

    if result.output:
        print(result.output, end='' if result.output.endswith('\n') else '\n')

    if result.ok:
        logger.info(f"Command completed successfully in {result.elapsed_seconds:.1f}s")
        return

    logger.error(f"Command failed (returncode: {result.returncode})")
    for fault in result.faults:
        if fault.kind != FaultKind.RUNTIME_OUTPUT:
            logger.error(f"  - {fault.kind.value}: {fault.message}")
    sys.exit(1)


def cmd_validate(args):
    """Validate the configuration file."""
    setup_logging(verbose=args.verbose)
    config = _load_config(args)

    errors = config.validate()
    if errors:
        print(f"Configuration {config.config_path} has {len(errors)} error(s):")
        for error in errors:
            print(f"  - {error}")
        sys.exit(1)

    print(f"Configuration {config.config_path} is valid ({len(config.tasks)} task(s))")


def cmd_init(args):
    """Initialize scheduler configuration."""
    setup_logging(verbose=args.verbose)
    config = _load_config(args)

    if config.config_path.exists() and not args.force:
        logger.error(f"Configuration already exists at {config.config_path} (use --force)")
        sys.exit(1)

    config.save()
    logger.info(f"Initialized scheduler configuration at: {config.config_path}")


def cmd_show_config(args):
    """Show current configuration."""
    setup_logging(verbose=args.verbose)
    config = _load_config(args)

    print(f"\nConfiguration file: {config.config_path}")
    print(f"Shell: {config.runner.shell}")
    print(f"Working dir: {config.runner.working_dir or '(inherit)'}")
    print(f"Max output: {config.runner.max_output_bytes} bytes")
    print(f"Workers: {config.execution.max_workers}")
    print(f"Timezone: {config.execution.timezone or '(local)'}")
    print(f"Logging level: {config.logging.level}")
    print(f"Log file: {config.logging.file}")
    print(f"\nTasks: {len(config.tasks)}")

    for task in config.tasks:
        status = "✓" if task.enabled else "✗"
        if task.kind == "cron":
            schedule = f"cron: {task.cron}"
        else:
            schedule = f"interval: {task.interval}"
        print(f"{status} [{task.id}] {task.name or ''}")
        print(f"    Command: {task.command}")
        print(f"    Schedule: {schedule}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="task-scheduler",
        description="Task Scheduler - Run shell commands on cron and interval schedules",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        '-c', '--config',
        type=str,
        help='Path to scheduler configuration file'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    subparsers = parser.add_subparsers(dest='subcommand', help='Commands')

    # Start command
    start_parser = subparsers.add_parser('start', help='Run the scheduler in the foreground')
    start_parser.add_argument(
        '--workers',
        type=int,
        help='Maximum concurrent workers (default: from config)'
    )
    start_parser.add_argument(
        '--log-file',
        type=str,
        help='Log file path'
    )
    start_parser.set_defaults(func=cmd_start)

    # Run-once command
    run_once_parser = subparsers.add_parser('run-once', help='Run a command once, now')
    run_once_parser.add_argument(
        '--command',
        required=True,
        help='Shell command to execute'
    )
    run_once_parser.set_defaults(func=cmd_run_once)

    # Validate command
    validate_parser = subparsers.add_parser('validate', help='Validate configuration')
    validate_parser.set_defaults(func=cmd_validate)

    # Init command
    init_parser = subparsers.add_parser('init', help='Initialize scheduler configuration')
    init_parser.add_argument('--force', action='store_true', help='Overwrite an existing file')
    init_parser.set_defaults(func=cmd_init)

    # Show config command
    show_config_parser = subparsers.add_parser('show-config', help='Show configuration')
    show_config_parser.set_defaults(func=cmd_show_config)

    return parser


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.subcommand:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == '__main__':
    main()
