"""Child process execution under a POSIX shell.

Spawns one child process per call with a controlled working directory
and environment overlay, in one of two modes:

- Blocking: execute_command() waits for the child and returns its full
  captured output as a CommandResult.
- Streaming: start_command() returns a live CommandHandle whose stdin
  stays open for the caller; the caller must await CommandHandle.wait()
  (or use the handle as an async context manager) to reap the child.

Every child runs in its own session so that a kill reaches the whole
process group, including grandchildren forked by the shell. Output is
drained by background reader tasks in both modes, so a child that writes
more than a pipe buffer never deadlocks, and whatever was captured before
a kill is still available.

Cancellation follows asyncio semantics. Cancelling the awaiting task
kills and reaps the child, then re-raises CancelledError. An expired
timeout kills and reaps the child, then raises CommandCancelledError
with the partial output. A streaming handle may carry its own deadline,
which interrupts blocked stdin writes as well as wait().
"""

import asyncio
import contextlib
import logging
import os
import shlex
import signal
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel

from testspace.errors import (
    CommandCancelledError,
    ExecutionError,
    SpawnError,
    StdinClosedError,
)
from testspace.options import validate_environment_entry

logger = logging.getLogger(__name__)

SHELL_INTERPRETER = "/bin/sh"
READ_CHUNK_SIZE = 65536
# How long to wait for pipes to close after the process group was killed.
DRAIN_AFTER_KILL_SECONDS = 1.0


class CommandResult(BaseModel):
    """Outcome of one finished child process.

    Attributes:
        args: The argument vector that was executed.
        cwd: Working directory of the child.
        exit_code: Exit status; negative when killed by a signal.
        stdout: Captured standard output, decoded as UTF-8.
        stderr: Captured standard error, decoded as UTF-8.
        duration_seconds: Wall-clock time from spawn to exit.
        success: True when exit_code is 0.
    """

    args: List[str]
    cwd: str
    exit_code: int
    stdout: str
    stderr: str
    duration_seconds: float
    success: bool

    @property
    def command(self) -> str:
        return shlex.join(self.args)


def shell_args(script: str) -> List[str]:
    """Build the argument vector that runs a script in the shell."""
    return [SHELL_INTERPRETER, "-c", script]


def build_environment(overlay: Optional[Sequence[str]]) -> Dict[str, str]:
    """Layer KEY=VALUE entries on top of the host environment.

    Entries are applied in order, so when a key repeats the last entry
    wins.

    Args:
        overlay: Ordered KEY=VALUE entries.

    Returns:
        The complete environment mapping for the child.

    Raises:
        ConfigurationError: If an entry is not of the KEY=VALUE form.
    """
    env = os.environ.copy()
    for entry in overlay or ():
        key, _, value = validate_environment_entry(entry).partition("=")
        env[key] = value
    return env


class _ProcessWatcher:
    """Drains a child's stdout and stderr and tracks its exit.

    The readers keep running until both pipes reach EOF, including after
    a kill, so the output captured before a deadline is never dropped.
    """

    def __init__(self, process: asyncio.subprocess.Process):
        self._process = process
        self._buffers: Dict[str, bytearray] = {
            "stdout": bytearray(),
            "stderr": bytearray(),
        }
        self._finished = asyncio.ensure_future(
            asyncio.gather(
                self._drain("stdout", process.stdout),
                self._drain("stderr", process.stderr),
                process.wait(),
            )
        )

    async def _drain(
        self, stream_name: str, stream: Optional[asyncio.StreamReader]
    ) -> None:
        if stream is None:
            return
        buffer = self._buffers[stream_name]
        # Unterminated tail of the previous chunk, logged once complete.
        partial_line = b""
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            buffer.extend(chunk)
            if logger.isEnabledFor(logging.DEBUG):
                *lines, partial_line = (partial_line + chunk).split(b"\n")
                for line in lines:
                    self._emit_line(stream_name, line)
        if partial_line and logger.isEnabledFor(logging.DEBUG):
            self._emit_line(stream_name, partial_line)

    def _emit_line(self, stream_name: str, line: bytes) -> None:
        logger.debug(
            "pid %d %s: %s",
            self._process.pid,
            stream_name,
            line.decode("utf-8", errors="replace"),
        )

    async def supervise(self, timeout: Optional[float]) -> None:
        """Wait for exit and EOF on both pipes.

        Raises:
            CommandCancelledError: If the deadline expired; the process
                group has been killed and reaped.
            asyncio.CancelledError: If the awaiting task was cancelled; the
                process group has been killed and reaped.
        """
        try:
            done, _ = await asyncio.wait({self._finished}, timeout=timeout)
        except asyncio.CancelledError:
            logger.warning(
                "Killing child process %d after cancellation", self._process.pid
            )
            await self.kill()
            raise

        if not done:
            logger.warning(
                "Killing child process %d after %ss deadline",
                self._process.pid,
                timeout,
            )
            await self.kill()
            stdout, stderr = self.output()
            raise CommandCancelledError(timeout, stdout, stderr)

        self._finished.result()

    def signal_group(self) -> None:
        """Send SIGKILL to the child's whole process group."""
        # The group outlives the leader when the shell forked children.
        with contextlib.suppress(ProcessLookupError):
            os.killpg(self._process.pid, signal.SIGKILL)

    async def kill(self) -> None:
        """Kill the child's process group and reap it."""
        self.signal_group()

        _, pending = await asyncio.wait(
            {self._finished}, timeout=DRAIN_AFTER_KILL_SECONDS
        )
        if pending:
            # Something outside the group still holds a pipe open.
            self._finished.cancel()
        await asyncio.gather(self._finished, return_exceptions=True)
        await self._process.wait()

    def output(self) -> Tuple[str, str]:
        return (
            self._buffers["stdout"].decode("utf-8", errors="replace"),
            self._buffers["stderr"].decode("utf-8", errors="replace"),
        )


async def _spawn(
    cwd: Union[str, Path],
    env: Optional[Sequence[str]],
    args: Sequence[str],
    enable_stdin: bool,
) -> asyncio.subprocess.Process:
    """Start the child process in its own session.

    Raises:
        SpawnError: If the executable or working directory is unusable.
    """
    environment = build_environment(env)
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=str(cwd),
            env=environment,
            stdin=asyncio.subprocess.PIPE if enable_stdin else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as exc:
        logger.error("Failed to start %s: %s", args[0], exc)
        raise SpawnError(list(args), str(exc)) from exc

    logger.debug(
        "Started child process",
        extra={"pid": process.pid, "cwd": str(cwd), "argv": list(args)},
    )
    return process


def _build_result(
    args: Sequence[str],
    cwd: Union[str, Path],
    process: asyncio.subprocess.Process,
    watcher: _ProcessWatcher,
    start_time: float,
) -> CommandResult:
    stdout, stderr = watcher.output()
    exit_code = process.returncode if process.returncode is not None else -1
    duration = time.monotonic() - start_time
    logger.debug(
        "Child process %d exited with status %d in %.3fs",
        process.pid,
        exit_code,
        duration,
    )
    return CommandResult(
        args=list(args),
        cwd=str(cwd),
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        duration_seconds=duration,
        success=exit_code == 0,
    )


async def execute_command(
    cwd: Union[str, Path],
    env: Optional[Sequence[str]],
    *args: str,
    timeout: Optional[float] = None,
) -> CommandResult:
    """Run a command to completion and capture its output.

    A non-zero exit status is not an error at this level; inspect
    CommandResult.success or pass the result to check_result().

    Args:
        cwd: Working directory for the child.
        env: KEY=VALUE entries layered on the host environment.
        *args: Executable followed by its arguments.
        timeout: Deadline in seconds; None waits forever.

    Returns:
        CommandResult with the exit status and captured streams.

    Raises:
        SpawnError: If the child could not be started.
        CommandCancelledError: If the deadline expired.
        asyncio.CancelledError: If the awaiting task was cancelled.
    """
    start_time = time.monotonic()
    process = await _spawn(cwd, env, args, enable_stdin=False)
    watcher = _ProcessWatcher(process)
    await watcher.supervise(timeout)
    return _build_result(args, cwd, process, watcher, start_time)


def check_result(result: CommandResult) -> CommandResult:
    """Raise ExecutionError when a result carries a non-zero exit status."""
    if not result.success:
        raise ExecutionError(
            result.command, result.exit_code, result.stdout, result.stderr
        )
    return result


class CommandHandle:
    """A live child process with its stdin open for writing.

    Bytes written are forwarded to the child verbatim; framing such as
    newline-terminated commands is the caller's responsibility. The child
    must be reaped with wait(), kill(), or by leaving an ``async with``
    block.

    With a deadline, the whole process group is killed when it expires;
    a write blocked on a full pipe and the following wait() then raise
    CommandCancelledError. Cancelling a task blocked in write() kills the
    child as well.

    Example:
        >>> async with await start_command(path, env, "git", "update-ref", "--stdin") as cmd:
        ...     await cmd.write(b"delete refs/heads/topic\\n")
        ...     await cmd.wait()
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        args: Sequence[str],
        cwd: Union[str, Path],
        start_time: float,
        timeout: Optional[float] = None,
    ):
        self._process = process
        self._args = list(args)
        self._cwd = cwd
        self._start_time = start_time
        self._watcher = _ProcessWatcher(process)
        self._result: Optional[CommandResult] = None
        self._timeout = timeout
        self._deadline_expired = False
        self._deadline_timer: Optional[asyncio.TimerHandle] = None
        if timeout is not None:
            self._deadline_timer = asyncio.get_running_loop().call_later(
                timeout, self._expire_deadline
            )

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    @property
    def result(self) -> Optional[CommandResult]:
        """The final result once the child has been reaped."""
        return self._result

    def _expire_deadline(self) -> None:
        if self._process.returncode is not None:
            return
        logger.warning(
            "Killing child process %d after %ss deadline", self.pid, self._timeout
        )
        self._deadline_expired = True
        self._watcher.signal_group()

    def _cancelled_error(self) -> CommandCancelledError:
        stdout, stderr = self._watcher.output()
        return CommandCancelledError(self._timeout, stdout, stderr)

    async def write(self, data: Union[bytes, str]) -> None:
        """Forward data to the child's stdin.

        Blocks while the OS pipe buffer is full.

        Raises:
            StdinClosedError: If stdin was closed or the child stopped
                reading it.
            CommandCancelledError: If the handle's deadline expired.
            asyncio.CancelledError: If the awaiting task was cancelled;
                the process group has been killed and reaped.
        """
        if self._deadline_expired:
            raise self._cancelled_error()
        stdin = self._process.stdin
        if stdin is None:
            raise StdinClosedError("Standard input was not enabled for this command")
        if stdin.is_closing():
            raise StdinClosedError("Standard input has already been closed")
        if isinstance(data, str):
            data = data.encode("utf-8")
        try:
            stdin.write(data)
            await stdin.drain()
        except asyncio.CancelledError:
            logger.warning(
                "Killing child process %d after cancelled write", self.pid
            )
            await self.kill()
            raise
        except ConnectionError as exc:
            if self._deadline_expired:
                raise self._cancelled_error() from exc
            raise StdinClosedError(
                f"Child process {self.pid} is no longer reading stdin: {exc}"
            ) from exc
        # A killed reader can also end the drain without an error.
        if self._deadline_expired:
            raise self._cancelled_error()

    def close_stdin(self) -> None:
        """Signal end of input to the child."""
        stdin = self._process.stdin
        if stdin is not None and not stdin.is_closing():
            stdin.close()

    async def wait(
        self, timeout: Optional[float] = None, check: bool = True
    ) -> CommandResult:
        """Close stdin, wait for the child to exit, and collect its output.

        Args:
            timeout: Deadline in seconds for this wait; None relies on the
                handle's own deadline, if any.
            check: Raise ExecutionError on a non-zero exit status.

        Returns:
            CommandResult with the exit status and captured streams.

        Raises:
            ExecutionError: If check is set and the child failed.
            CommandCancelledError: If either deadline expired.
            asyncio.CancelledError: If the awaiting task was cancelled.
        """
        if self._result is None:
            self.close_stdin()
            try:
                await self._watcher.supervise(timeout)
            finally:
                if self._process.returncode is not None:
                    self._finish()

        if self._deadline_expired:
            raise self._cancelled_error()
        if check:
            check_result(self._result)
        return self._result

    async def kill(self) -> CommandResult:
        """Kill the child's process group and reap it."""
        if self._result is None:
            self.close_stdin()
            await self._watcher.kill()
            self._finish()
        return self._result

    def _finish(self) -> None:
        if self._deadline_timer is not None:
            self._deadline_timer.cancel()
        self._result = _build_result(
            self._args, self._cwd, self._process, self._watcher, self._start_time
        )

    async def __aenter__(self) -> "CommandHandle":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._result is None:
            await self.kill()


async def start_command(
    cwd: Union[str, Path],
    env: Optional[Sequence[str]],
    *args: str,
    enable_stdin: bool = True,
    timeout: Optional[float] = None,
) -> CommandHandle:
    """Start a command and return immediately with a live handle.

    Args:
        cwd: Working directory for the child.
        env: KEY=VALUE entries layered on the host environment.
        *args: Executable followed by its arguments.
        enable_stdin: Keep stdin open as a pipe; otherwise /dev/null.
        timeout: Deadline in seconds from spawn after which the process
            group is killed; None never expires.

    Returns:
        CommandHandle that must be waited on or killed.

    Raises:
        SpawnError: If the child could not be started.
    """
    start_time = time.monotonic()
    process = await _spawn(cwd, env, args, enable_stdin=enable_stdin)
    return CommandHandle(process, args, cwd, start_time, timeout=timeout)
