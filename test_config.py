#!/usr/bin/env python3
"""
Tests for the scheduler configuration: path resolution, loading, saving
and validation.
"""

import json

import pytest

from taskscheduler.config import SchedulerConfig, TaskConfig
from taskscheduler.errors import ConfigError
from taskscheduler.runner import DEFAULT_MAX_OUTPUT_BYTES


def test_missing_file_uses_defaults(tmp_path):
    config = SchedulerConfig(str(tmp_path / "missing.json"))

    assert config.tasks == []
    assert config.runner.shell == "/bin/bash"
    assert config.runner.max_output_bytes == DEFAULT_MAX_OUTPUT_BYTES
    assert config.execution.max_instances > 1
    assert config.validate() == []


def test_config_path_from_environment(tmp_path, monkeypatch):
    config_path = tmp_path / "from_env.json"
    monkeypatch.setenv("TASK_SCHEDULER_CONFIG", str(config_path))

    config = SchedulerConfig()
    assert config.config_path == config_path


def test_default_paths_follow_data_dir(tmp_path):
    # conftest points TASK_SCHEDULER_DATA_DIR at tmp_path / "data"
    config = SchedulerConfig()

    assert config.config_path == tmp_path / "data" / "config.json"
    assert config.logging.file == str(tmp_path / "data" / "logs" / "scheduler.log")


def test_load_sections_and_tasks(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({
        'runner': {'shell': '/bin/sh', 'env': {'A': '1'}, 'max_output_bytes': 4096},
        'scheduler': {'max_workers': 3, 'timezone': 'UTC'},
        'logging': {'level': 'DEBUG', 'file': str(tmp_path / 'x.log')},
        'tasks': [
            {'id': 1, 'command': 'true', 'cron': '*/5 * * * *'},
            {'id': 2, 'command': 'true', 'name': 'poll',
             'interval': {'unit': 'second', 'value': 30}},
        ]
    }))

    config = SchedulerConfig(str(config_path))

    assert config.runner.shell == '/bin/sh'
    assert config.runner.env == {'A': '1'}
    assert config.runner.max_output_bytes == 4096
    assert config.execution.max_workers == 3
    assert config.logging.level == 'DEBUG'
    assert [t.kind for t in config.tasks] == ['cron', 'interval']

    schedule = config.tasks[1].interval_schedule()
    assert schedule.value == 30
    assert schedule.run_immediately is True
    assert config.validate() == []


def test_save_and_reload(tmp_path):
    config = SchedulerConfig(str(tmp_path / "config.json"))
    config.tasks.append(TaskConfig(id=5, command="echo hi", name="hello", cron="0 9 * * 1-5"))
    config.save()

    reloaded = SchedulerConfig(str(tmp_path / "config.json"))
    assert len(reloaded.tasks) == 1
    assert reloaded.tasks[0].cron == "0 9 * * 1-5"
    assert reloaded.tasks[0].interval is None
    assert reloaded.tasks[0].to_task().schedule == "0 9 * * 1-5"


def test_invalid_json_raises_config_error(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text("{not json")

    with pytest.raises(ConfigError):
        SchedulerConfig(str(config_path))


def test_validate_reports_problems(tmp_path):
    config = SchedulerConfig(str(tmp_path / "config.json"))
    config.runner.max_output_bytes = 0
    config.tasks = [
        TaskConfig(id=1, command="", cron="0 2 * * *"),
        TaskConfig(id=2, command="true", cron="bad"),
        TaskConfig(id=3, command="true", interval={'unit': 'fortnight', 'value': 1}),
        TaskConfig(id=4, command="true"),
        TaskConfig(id=5, command="true", cron="0 2 * * *"),
        TaskConfig(id=5, command="true", cron="0 3 * * *"),
        TaskConfig(id=5, command="true", interval={'unit': 'minute', 'value': 1}),
    ]

    errors = config.validate()

    assert "runner: 'max_output_bytes' must be positive" in errors
    assert any(e.startswith("Task 1") and "'command' cannot be empty" in e for e in errors)
    assert any(e.startswith("Task 2") and "Invalid cron expression" in e for e in errors)
    assert any(e.startswith("Task 3") and "Invalid interval unit" in e for e in errors)
    assert any(e.startswith("Task 4") and "exactly one of" in e for e in errors)
    # a cron and an interval task may share an id, two cron tasks may not
    assert len([e for e in errors if "duplicate" in e]) == 1
