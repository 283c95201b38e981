"""
Tests for ProcessRunner: lifecycle ordering, error output, output ceiling
and spawn failures. Commands run for real through /bin/bash.
"""

import json
import subprocess
from pathlib import Path

import pytest

from taskscheduler.models import FaultKind, TaskCallbacks
from taskscheduler.runner import ProcessRunner


def test_successful_run_reports_start_then_end(recorder):
    result = ProcessRunner().run("echo hello", recorder.callbacks())

    assert recorder.kinds() == ['start', 'end']
    assert result.output == "hello\n"
    assert result.returncode == 0
    assert result.ok
    assert result.faults == []

    start_time = recorder.times('start')[0]
    end_event = [e for e in recorder.events if e[0] == 'end'][0]
    _, end_time, elapsed = end_event
    assert start_time <= end_time
    assert elapsed == pytest.approx((end_time - start_time).total_seconds())
    assert result.elapsed_seconds == elapsed


def test_elapsed_time_matches_command_duration(recorder):
    result = ProcessRunner().run("sleep 0.3", recorder.callbacks())

    assert result.elapsed_seconds >= 0.3
    assert result.elapsed_seconds < 5


def test_stderr_output_is_reported_and_run_completes(recorder):
    result = ProcessRunner().run("echo oops >&2; echo done", recorder.callbacks())

    kinds = recorder.kinds()
    assert kinds[0] == 'start'
    assert kinds[-1] == 'end'
    assert 'error' in kinds
    assert "oops" in "".join(recorder.errors())

    assert result.returncode == 0
    assert result.output == "done\n"
    assert result.error_output == "oops\n"
    assert result.has_fault(FaultKind.RUNTIME_OUTPUT)
    # error output alone does not fail the run
    assert result.ok


def test_truncated_utf8_at_end_of_stderr_is_replaced():
    result = ProcessRunner().run("printf 'bad\\xe2\\x82' >&2")

    assert result.returncode == 0
    assert result.error_output == "bad\ufffd"


def test_nonzero_exit_still_ends(recorder):
    result = ProcessRunner().run("exit 3", recorder.callbacks())

    assert recorder.kinds() == ['start', 'end']
    assert result.returncode == 3
    assert not result.ok


def test_commands_run_through_bash():
    result = ProcessRunner().run("[[ 1 == 1 ]] && echo bash")
    assert result.output == "bash\n"


def test_environment_and_working_dir(tmp_path):
    runner = ProcessRunner(working_dir=str(tmp_path), env={'GREETING': 'hi'})
    result = runner.run('echo "$GREETING"; pwd')

    lines = result.output.splitlines()
    assert lines[0] == "hi"
    assert Path(lines[1]).resolve() == tmp_path.resolve()


def test_output_over_ceiling_is_truncated(recorder):
    runner = ProcessRunner(max_output_bytes=1024)
    result = runner.run("head -c 100000 /dev/zero", recorder.callbacks())

    overflows = [f for f in result.faults if f.kind == FaultKind.BUFFER_OVERFLOW]
    assert len(overflows) == 1
    assert len(result.output) <= 1024
    assert any("exceeded 1024 bytes" in message for message in recorder.errors())
    assert recorder.kinds()[-1] == 'end'
    assert not result.ok


def test_endless_output_is_killed_at_ceiling(recorder):
    runner = ProcessRunner(max_output_bytes=4096)
    result = runner.run("yes", recorder.callbacks())

    assert result.has_fault(FaultKind.BUFFER_OVERFLOW)
    assert len(result.output) <= 4096
    assert result.returncode != 0
    assert recorder.ended.is_set()


def test_stderr_counts_against_ceiling(recorder):
    runner = ProcessRunner(max_output_bytes=100)
    result = runner.run("head -c 5000 /dev/zero | tr '\\0' 'x' >&2", recorder.callbacks())

    assert result.has_fault(FaultKind.BUFFER_OVERFLOW)
    assert len(result.error_output) <= 100


def test_missing_shell_is_a_spawn_fault(recorder):
    runner = ProcessRunner(shell="/nonexistent/bash")
    result = runner.run("echo hi", recorder.callbacks())

    assert recorder.kinds() == ['error']
    fault = json.loads(recorder.errors()[0])
    assert fault['name'] == 'FileNotFoundError'

    assert not result.started
    assert result.has_fault(FaultKind.SPAWN)
    assert not result.ok


def test_missing_working_dir_is_a_spawn_fault(tmp_path):
    runner = ProcessRunner(working_dir=str(tmp_path / "missing"))
    result = runner.run("echo hi")

    assert result.has_fault(FaultKind.SPAWN)
    assert result.returncode is None


def test_failing_on_start_is_reported_through_on_error(recorder):
    def on_start(process, start_time):
        raise RuntimeError("callback broke")

    callbacks = TaskCallbacks(on_start=on_start, on_end=recorder.on_end, on_error=recorder.on_error)
    result = ProcessRunner().run("echo hello", callbacks)

    assert "callback broke" in recorder.errors()[0]
    assert recorder.ended.is_set()
    assert result.output == "hello\n"
    assert result.has_fault(FaultKind.INTERNAL)


def test_failing_on_error_does_not_escape():
    def on_error(message):
        raise RuntimeError("callback broke")

    result = ProcessRunner().run("echo oops >&2", TaskCallbacks(on_error=on_error))

    assert result.returncode == 0
    assert result.error_output == "oops\n"


def test_running_process_is_passed_to_callbacks():
    seen = {}

    def on_start(process, start_time):
        seen['pid'] = process.pid
        seen['start_time'] = process.start_time == start_time

    result = ProcessRunner().run("echo hi", TaskCallbacks(on_start=on_start))

    assert seen['pid'] == result.pid
    assert seen['start_time']


def test_ceiling_must_be_positive():
    with pytest.raises(ValueError):
        ProcessRunner(max_output_bytes=0)


def test_failure_while_observing_kills_child_and_still_ends(recorder, monkeypatch):
    original_wait = subprocess.Popen.wait
    calls = []

    def wait(self, *args, **kwargs):
        calls.append(self.pid)
        if len(calls) == 1:
            raise RuntimeError("wait broke")
        return original_wait(self, *args, **kwargs)

    monkeypatch.setattr(subprocess.Popen, "wait", wait)
    result = ProcessRunner().run("sleep 30", recorder.callbacks())

    assert recorder.kinds() == ['start', 'error', 'end']
    assert "wait broke" in recorder.errors()[0]
    assert result.has_fault(FaultKind.INTERNAL)
    # the child was killed and reaped rather than left running
    assert result.returncode == -9
    assert result.elapsed_seconds < 10
