"""
Shell command execution for scheduled tasks.

Runs one command as a child process, streams both output pipes, enforces an
output ceiling and reports lifecycle events through TaskCallbacks. The runner
never raises: every failure ends up as a Fault on the returned RunResult, an
on_error call and a log line, so a broken task cannot take the scheduler down.
"""

import codecs
import json
import logging
import os
import signal
import subprocess
import threading
from datetime import datetime
from functools import partial
from typing import Dict, List, Optional, Tuple

from taskscheduler.models import Fault, FaultKind, RunResult, TaskCallbacks

logger = logging.getLogger(__name__)

DEFAULT_SHELL = "/bin/bash"
DEFAULT_MAX_OUTPUT_BYTES = 200 * 1024 * 1024  # 200 MiB
READ_CHUNK_SIZE = 64 * 1024


def _serialize_exception(exc: BaseException) -> str:
    """Describe an exception as a JSON object string."""
    data = {'name': type(exc).__name__, 'message': str(exc)}
    for attr in ('errno', 'strerror', 'filename'):
        value = getattr(exc, attr, None)
        if value is not None:
            data[attr] = value
    return json.dumps(data, default=str)


class RunningProcess:
    """
    A spawned command instance.

    Holds the Popen object, the start timestamp and the stdout buffer. Both
    pipes count against max_output_bytes; once the ceiling is reached the
    buffer stops growing.
    """

    def __init__(
        self,
        command: str,
        process: subprocess.Popen,
        start_time: datetime,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    ):
        self.command = command
        self.process = process
        self.start_time = start_time
        self.max_output_bytes = max_output_bytes
        self.output_bytes = 0
        self.overflowed = False
        self._chunks: List[bytes] = []
        self._lock = threading.Lock()

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def output(self) -> str:
        with self._lock:
            data = b"".join(self._chunks)
        return data.decode("utf-8", errors="replace")

    def account(self, chunk: bytes, keep: bool = True) -> Tuple[Optional[bytes], bool]:
        """
        Count a chunk against the ceiling.

        Returns:
            (kept, crossed): the part of the chunk that fits, possibly
            truncated (None once the ceiling has been reached), and whether
            this chunk is the one that crossed the ceiling
        """
        with self._lock:
            if self.overflowed:
                return None, False
            remaining = self.max_output_bytes - self.output_bytes
            if len(chunk) > remaining:
                chunk = chunk[:remaining]
                self.overflowed = True
            self.output_bytes += len(chunk)
            if keep and chunk:
                self._chunks.append(chunk)
            return chunk, self.overflowed

    def kill(self):
        """Kill the whole process group of the command."""
        try:
            os.killpg(self.process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            # Group already gone
            pass

    def __repr__(self):
        return f"RunningProcess(pid={self.pid}, command={self.command!r})"


class ProcessRunner:
    """
    Spawns shell commands and observes them until they close.

    Event order for one run: on_start, then any number of on_error, then
    on_end. A spawn failure only produces on_error.
    """

    def __init__(
        self,
        shell: str = DEFAULT_SHELL,
        working_dir: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    ):
        """
        Initialize process runner.

        Args:
            shell: Shell binary used to interpret commands
            working_dir: Working directory for commands (None = inherit)
            env: Extra environment variables layered over the current environment
            max_output_bytes: Ceiling on combined stdout/stderr bytes per run
        """
        if max_output_bytes <= 0:
            raise ValueError("max_output_bytes must be positive")

        self.shell = shell
        self.working_dir = working_dir
        self.env = dict(env or {})
        self.max_output_bytes = max_output_bytes

    def _build_env(self) -> Optional[Dict[str, str]]:
        if not self.env:
            return None
        merged = dict(os.environ)
        merged.update({k: str(v) for k, v in self.env.items()})
        return merged

    def run(self, command: str, callbacks: Optional[TaskCallbacks] = None) -> RunResult:
        """
        Run a command to completion.

        Args:
            command: Shell command to execute
            callbacks: Lifecycle callbacks for this run

        Returns:
            RunResult describing the run. Never raises.
        """
        run = _Run(self, command, callbacks or TaskCallbacks())
        try:
            run.execute()
        except Exception as e:
            logger.error(
                f"Task '{command}' failed at {datetime.now().isoformat()}: {e}",
                exc_info=True
            )
            run.fault(FaultKind.INTERNAL, _serialize_exception(e))
        return run.result


class _Run:
    """State of a single ProcessRunner.run invocation."""

    def __init__(self, runner: ProcessRunner, command: str, callbacks: TaskCallbacks):
        self.runner = runner
        self.command = command
        self.callbacks = callbacks
        self.result = RunResult(command=command)
        self.process: Optional[RunningProcess] = None
        # Serializes callbacks coming from the two reader threads
        self._callback_lock = threading.RLock()

    def execute(self):
        start_time = datetime.now()
        try:
            popen = subprocess.Popen(
                self.command,
                shell=True,
                executable=self.runner.shell,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self.runner.working_dir,
                env=self.runner._build_env(),
                start_new_session=True
            )
        except OSError as e:
            logger.error(
                f"Task '{self.command}' failed to start at {start_time.isoformat()}: {e}"
            )
            self.fault(FaultKind.SPAWN, _serialize_exception(e))
            return

        self.process = RunningProcess(
            self.command, popen, start_time, self.runner.max_output_bytes
        )
        self.result.pid = popen.pid
        self.result.start_time = start_time
        logger.info(f"{self.command} pid: {popen.pid} started")

        readers: List[threading.Thread] = []
        try:
            self._invoke('on_start', self.process, start_time)

            streams = (
                ("stdout", popen.stdout, self._on_stdout),
                ("stderr", popen.stderr, self._on_stderr),
            )
            for label, stream, handler in streams:
                reader = threading.Thread(
                    target=self._read_stream,
                    args=(stream, handler),
                    name=f"{label}-{popen.pid}",
                    daemon=True
                )
                reader.start()
                readers.append(reader)

            returncode = popen.wait()
            for reader in readers:
                reader.join()
        except Exception as e:
            logger.error(
                f"Observing '{self.command}' pid: {popen.pid} failed: {e}", exc_info=True
            )
            self.fault(FaultKind.INTERNAL, _serialize_exception(e))
            returncode = self._reap(popen, readers)

        if returncode < 0:
            logger.info(f"{self.command} pid: {popen.pid} exit None signal {-returncode}")
        else:
            logger.info(f"{self.command} pid: {popen.pid} exit {returncode} signal None")

        end_time = datetime.now()
        elapsed = (end_time - start_time).total_seconds()
        self.result.end_time = end_time
        self.result.elapsed_seconds = elapsed
        self.result.returncode = returncode
        self.result.output = self.process.output
        logger.info(f"{self.command} pid: {popen.pid} closed {returncode}")

        self._invoke('on_end', self.process, end_time, elapsed)

    def _reap(self, popen: subprocess.Popen, readers: List[threading.Thread]) -> int:
        """Kill a child left behind by a failed run, wait for it and close its pipes."""
        if popen.poll() is None:
            self.process.kill()
        returncode = popen.wait()
        for reader in readers:
            reader.join(timeout=5)
        for stream in (popen.stdout, popen.stderr):
            if not stream.closed:
                stream.close()
        return returncode

    def _read_stream(self, stream, handler):
        """Drain a pipe, passing each chunk to handler."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            for chunk in iter(partial(stream.read1, READ_CHUNK_SIZE), b""):
                handler(chunk, decoder)
            # A multi-byte sequence cut off at EOF decodes to U+FFFD
            handler(b"", decoder, final=True)
        except Exception as e:
            logger.error(f"Reading output of '{self.command}' failed: {e}", exc_info=True)
            self.fault(FaultKind.INTERNAL, _serialize_exception(e))
        finally:
            stream.close()

    def _on_stdout(self, chunk: bytes, decoder, final: bool = False):
        if chunk:
            self._account(chunk, keep=True)

    def _on_stderr(self, chunk: bytes, decoder, final: bool = False):
        if final:
            if self.process.overflowed:
                return
            text = decoder.decode(b"", final=True)
        else:
            kept = self._account(chunk, keep=False)
            if not kept:
                return
            text = decoder.decode(kept)
        if not text:
            return
        logger.error(
            f"Task '{self.command}' wrote to stderr at {datetime.now().isoformat()}: {text!r}"
        )
        self.fault(FaultKind.RUNTIME_OUTPUT, text)

    def _account(self, chunk: bytes, keep: bool) -> Optional[bytes]:
        kept, crossed = self.process.account(chunk, keep=keep)
        if crossed:
            self._overflow()
        return kept

    def _overflow(self):
        limit = self.process.max_output_bytes
        message = (
            f"Output of '{self.command}' exceeded {limit} bytes; "
            f"killing pid {self.process.pid}"
        )
        logger.error(message)
        self.fault(FaultKind.BUFFER_OVERFLOW, message)
        self.process.kill()

    def fault(self, kind: FaultKind, message: str):
        """Record a fault and report it through on_error."""
        with self._callback_lock:
            self.result.faults.append(Fault(kind, message))
            callback = self.callbacks.on_error
            if callback is None:
                return
            try:
                callback(message)
            except Exception:
                logger.exception(f"on_error callback failed for '{self.command}'")

    def _invoke(self, name: str, *args):
        callback = getattr(self.callbacks, name)
        if callback is None:
            return
        with self._callback_lock:
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"{name} callback failed for '{self.command}': {e}", exc_info=True)
                self.fault(FaultKind.INTERNAL, _serialize_exception(e))
