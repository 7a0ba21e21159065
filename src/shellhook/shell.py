from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
import subprocess
from threading import Event, Lock, Thread
from typing import BinaryIO, Callable, Optional

from shellhook.binaries import BinaryResolver
from shellhook.command_runner import ProcessLauncher, ShellProcess, SubprocessLauncher
from shellhook.line_reader import LineReader


# Never a real Popen.returncode (0..255 or a negated signal number).
EXIT_CODE_UNKNOWN = -(2**31)

SH = "sh"
SU = "su"


class ShellStateError(RuntimeError):
    """Raised when a CommandShell is driven out of its lifecycle order."""


class ShellState(Enum):
    CREATED = "created"
    BEFORE_EXECUTE = "before_execute"
    LAUNCHING = "launching"
    LAUNCH_FAILED = "launch_failed"
    LAUNCHED = "launched"
    STREAMS_ATTACHED = "streams_attached"
    COMMAND_FLUSHED = "command_flushed"
    AWAITING_TERMINATION = "awaiting_termination"
    TERMINATED = "terminated"

    @property
    def is_terminal(self) -> bool:
        return self in (ShellState.LAUNCH_FAILED, ShellState.TERMINATED)


_TRANSITIONS: dict[ShellState, frozenset[ShellState]] = {
    ShellState.CREATED: frozenset({ShellState.BEFORE_EXECUTE}),
    ShellState.BEFORE_EXECUTE: frozenset({ShellState.LAUNCHING}),
    ShellState.LAUNCHING: frozenset({ShellState.LAUNCH_FAILED, ShellState.LAUNCHED}),
    ShellState.LAUNCHED: frozenset({ShellState.STREAMS_ATTACHED}),
    # A failed write skips COMMAND_FLUSHED.
    ShellState.STREAMS_ATTACHED: frozenset(
        {ShellState.COMMAND_FLUSHED, ShellState.AWAITING_TERMINATION}
    ),
    ShellState.COMMAND_FLUSHED: frozenset({ShellState.AWAITING_TERMINATION}),
    ShellState.AWAITING_TERMINATION: frozenset({ShellState.TERMINATED}),
}


class ShellHooks:
    """Lifecycle callbacks of a CommandShell; every method defaults to a no-op.

    ``on_stdout`` and ``on_stderr`` run on two different reader threads and
    may overlap each other, so anything both of them touch needs a lock.
    """

    def before_execute(self) -> None:
        pass

    def on_execute_failed(self, cause: Exception) -> None:
        pass

    def on_stdout(self, line: str) -> None:
        pass

    def on_stderr(self, line: str) -> None:
        pass

    def on_cmd_started(self) -> None:
        pass

    def on_cmd_terminated(self, exit_code: int) -> None:
        pass


@dataclass
class CallbackHooks(ShellHooks):
    before: Optional[Callable[[], None]] = None
    execute_failed: Optional[Callable[[Exception], None]] = None
    stdout: Optional[Callable[[str], None]] = None
    stderr: Optional[Callable[[str], None]] = None
    cmd_started: Optional[Callable[[], None]] = None
    cmd_terminated: Optional[Callable[[int], None]] = None

    def before_execute(self) -> None:
        if self.before:
            self.before()

    def on_execute_failed(self, cause: Exception) -> None:
        if self.execute_failed:
            self.execute_failed(cause)

    def on_stdout(self, line: str) -> None:
        if self.stdout:
            self.stdout(line)

    def on_stderr(self, line: str) -> None:
        if self.stderr:
            self.stderr(line)

    def on_cmd_started(self) -> None:
        if self.cmd_started:
            self.cmd_started()

    def on_cmd_terminated(self, exit_code: int) -> None:
        if self.cmd_terminated:
            self.cmd_terminated(exit_code)


class CommandShell:
    """Run one command line through ``sh`` (or ``su``) and stream its output.

    The command is written to the interpreter's stdin rather than passed as
    an argument, so pipes, redirections and ``;``-separated statements are
    all handled by the interpreter itself. Results are only reported through
    ``hooks``; ``execute`` returns nothing. An instance is single-use.
    """

    def __init__(
        self,
        tag: str,
        command: str,
        elevated: bool = False,
        hooks: Optional[ShellHooks] = None,
        *,
        resolver: Optional[BinaryResolver] = None,
        launcher: Optional[ProcessLauncher] = None,
        log_lines: bool = True,
        encoding: str = "utf-8",
        poll_interval: float = 0.1,
        shell_name: str = SH,
        superuser_name: str = SU,
    ) -> None:
        if not tag:
            raise ValueError("CommandShell tag must be a non-empty string")
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive: {poll_interval}")
        self.tag = tag
        self.command = command
        self.elevated = elevated
        self.hooks = hooks or ShellHooks()
        self._launcher = launcher or SubprocessLauncher()
        self._log_lines = log_lines
        self._encoding = encoding
        self._poll_interval = poll_interval
        self._logger = logging.getLogger("shellhook").getChild(tag)

        resolver = resolver or BinaryResolver()
        self.sh_path = resolver.resolve(shell_name)
        self.su_path = resolver.resolve(superuser_name)

        self._state = ShellState.CREATED
        self._state_lock = Lock()
        self._interrupted = Event()
        self._process: Optional[ShellProcess] = None
        self._stdout_reader: Optional[LineReader] = None
        self._stderr_reader: Optional[LineReader] = None

    @property
    def state(self) -> ShellState:
        return self._state

    @property
    def process(self) -> Optional[ShellProcess]:
        return self._process

    @property
    def interpreter_path(self) -> str:
        return self.su_path if self.elevated else self.sh_path

    def start(self) -> Thread:
        thread = Thread(target=self.execute, name=f"{self.tag}-stdin")
        thread.start()
        return thread

    def interrupt(self) -> None:
        """Stop waiting for the readers and the process.

        The process itself is left alone; ``on_cmd_terminated`` then reports
        ``EXIT_CODE_UNKNOWN`` unless the process already exited.
        """
        self._interrupted.set()

    def execute(self) -> None:
        with self._state_lock:
            if self._state is not ShellState.CREATED:
                raise ShellStateError(
                    f"{self.tag}: execute() called in state {self._state.value}"
                )
            self._advance(ShellState.BEFORE_EXECUTE)

        self.hooks.before_execute()

        process = self._fork_shell()
        if process is None:
            return

        self._start_readers(process)
        self._execute_command(process.stdin)
        exit_code = self._await_termination(process)
        self._advance(ShellState.TERMINATED)
        self._logger.debug("command terminated with exit code %s", exit_code)
        self.hooks.on_cmd_terminated(exit_code)

    def _advance(self, target: ShellState) -> None:
        if self._state.is_terminal:
            raise ShellStateError(
                f"{self.tag}: already finished in state {self._state.value}"
            )
        allowed = _TRANSITIONS.get(self._state, frozenset())
        if target not in allowed:
            raise ShellStateError(
                f"{self.tag}: illegal transition {self._state.value} -> {target.value}"
            )
        self._state = target

    def _fork_shell(self) -> Optional[ShellProcess]:
        self._advance(ShellState.LAUNCHING)
        path = self.interpreter_path
        self._logger.debug("invoking external process: %s", path)
        try:
            process = self._launcher.spawn(path)
        except (OSError, subprocess.SubprocessError) as exc:
            self._logger.error("invoking external process failed: %s: %s", path, exc)
            self._advance(ShellState.LAUNCH_FAILED)
            self.hooks.on_execute_failed(exc)
            return None
        self._process = process
        self._advance(ShellState.LAUNCHED)
        self._logger.debug("started %s as pid %s", path, process.pid)
        return process

    def _start_readers(self, process: ShellProcess) -> None:
        self._stdout_reader = self._make_reader(
            "stdout", process.stdout, self.hooks.on_stdout
        )
        self._stderr_reader = self._make_reader(
            "stderr", process.stderr, self.hooks.on_stderr
        )
        self._stdout_reader.start()
        self._stderr_reader.start()
        self._advance(ShellState.STREAMS_ATTACHED)

    def _make_reader(
        self, channel: str, stream: BinaryIO, on_line: Callable[[str], None]
    ) -> LineReader:
        return LineReader(
            f"{self.tag}-{channel}",
            stream,
            on_line,
            log_lines=self._log_lines,
            encoding=self._encoding,
            logger=self._logger.getChild(channel),
        )

    def _execute_command(self, stdin: BinaryIO) -> None:
        self._logger.debug("invoking command line: %s", self.command)
        flushed = False
        try:
            stdin.write((self.command + "\n").encode(self._encoding))
            stdin.flush()
            flushed = True
        except (OSError, ValueError) as exc:
            # The exit code will tell the caller whether the command ran.
            self._logger.warning("writing command to stdin failed: %s", exc)
        finally:
            self._close_quietly(stdin)

        if not flushed:
            return
        self._advance(ShellState.COMMAND_FLUSHED)
        try:
            self.hooks.on_cmd_started()
        except Exception:
            # on_cmd_terminated must still follow a successful launch.
            self._logger.exception("on_cmd_started hook raised")

    def _close_quietly(self, stream: BinaryIO) -> None:
        try:
            stream.close()
        except (OSError, ValueError) as exc:
            self._logger.warning("closing stdin failed: %s", exc)

    def _await_termination(self, process: ShellProcess) -> int:
        self._advance(ShellState.AWAITING_TERMINATION)
        self._join_readers()
        return self._wait_for_quietly(process)

    def _join_readers(self) -> None:
        for reader in (self._stdout_reader, self._stderr_reader):
            if reader is None:
                continue
            while reader.is_alive():
                if self._interrupted.is_set():
                    self._logger.warning("joining %s interrupted", reader.name)
                    return
                reader.join(self._poll_interval)

    def _wait_for_quietly(self, process: ShellProcess) -> int:
        while True:
            try:
                return process.wait(timeout=self._poll_interval)
            except subprocess.TimeoutExpired:
                if self._interrupted.is_set():
                    self._logger.warning("waiting for process exit interrupted")
                    return EXIT_CODE_UNKNOWN
