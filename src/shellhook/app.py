from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
import sys
from typing import Iterable, Optional, TextIO

from shellhook.binaries import BinaryResolver
from shellhook.command_runner import SubprocessLauncher
from shellhook.config import AppConfig, ConfigError, ConfigLoader
from shellhook.logging_utils import LoggerFactory
from shellhook.shell import EXIT_CODE_UNKNOWN, CommandShell, ShellHooks


EXIT_LAUNCH_FAILED = 127
EXIT_CONFIG_ERROR = 2
EXIT_UNKNOWN = 1


class ConsoleHooks(ShellHooks):
    """Relay interpreter output to the console and remember the outcome."""

    def __init__(self, out: TextIO, err: TextIO) -> None:
        self._out = out
        self._err = err
        self.exit_code: Optional[int] = None
        self.launch_error: Optional[Exception] = None

    def on_execute_failed(self, cause: Exception) -> None:
        self.launch_error = cause

    def on_stdout(self, line: str) -> None:
        print(line, file=self._out, flush=True)

    def on_stderr(self, line: str) -> None:
        print(line, file=self._err, flush=True)

    def on_cmd_terminated(self, exit_code: int) -> None:
        self.exit_code = exit_code


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        config_dir = Path(args.config) if args.config else None
        config = ConfigLoader(root_dir=config_dir).load()
    except ConfigError as exc:
        LoggerFactory.create("shellhook")
        logging.getLogger("shellhook").error("Config error: %s", exc)
        return EXIT_CONFIG_ERROR

    log_path = os.getenv("SHELLHOOK_LOG_PATH") or config.logging.file_path
    LoggerFactory.create(
        "shellhook",
        log_file=log_path,
        level=logging.DEBUG if args.verbose else logging.INFO,
    )
    logger = logging.getLogger("shellhook")

    hooks = ConsoleHooks(sys.stdout, sys.stderr)
    shell = build_shell(
        config,
        args.tag,
        " ".join(args.command),
        args.su,
        hooks,
        log_lines=config.shell.log_lines or args.verbose,
    )
    shell.execute()

    if hooks.launch_error is not None:
        logger.error("Could not start %s: %s", shell.interpreter_path, hooks.launch_error)
        return EXIT_LAUNCH_FAILED
    if hooks.exit_code is None or hooks.exit_code == EXIT_CODE_UNKNOWN:
        logger.warning("Exit code of %s unknown", shell.interpreter_path)
        return EXIT_UNKNOWN
    return hooks.exit_code


def build_shell(
    config: AppConfig,
    tag: str,
    command: str,
    elevated: bool,
    hooks: ShellHooks,
    *,
    log_lines: Optional[bool] = None,
) -> CommandShell:
    launcher = SubprocessLauncher(
        env=config.shell.environment or None,
        cwd=config.shell.working_dir,
    )
    return CommandShell(
        tag,
        command,
        elevated,
        hooks,
        resolver=BinaryResolver(search_dirs=config.binaries.search_dirs),
        launcher=launcher,
        log_lines=config.shell.log_lines if log_lines is None else log_lines,
        encoding=config.shell.encoding,
        poll_interval=config.shell.poll_interval_seconds,
        shell_name=config.binaries.shell,
        superuser_name=config.binaries.superuser,
    )


def _parse_args(argv: Optional[Iterable[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run a command line through sh (or su) and stream its output"
    )
    parser.add_argument("--config", help="Directory holding config.yml and config.d/")
    parser.add_argument(
        "--su",
        action="store_true",
        help="Run the command through the superuser binary instead of sh",
    )
    parser.add_argument("--tag", default="shell", help="Name used in log records")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Debug logging, mirroring every relayed line into the log",
    )
    parser.add_argument("command", nargs="+", help="Command line passed to the interpreter")
    return parser.parse_args(argv)


if __name__ == "__main__":
    raise SystemExit(main())
