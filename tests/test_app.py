from __future__ import annotations

import logging
import os
from pathlib import Path
import shutil

import pytest

from shellhook.app import EXIT_CONFIG_ERROR, EXIT_LAUNCH_FAILED, build_shell, main
from shellhook.config import ConfigLoader
from shellhook.shell import ShellHooks


needs_sh = pytest.mark.skipif(
    os.name != "posix" or shutil.which("sh") is None,
    reason="needs a POSIX sh on PATH",
)


@pytest.fixture(autouse=True)
def _reset_shellhook_logger():
    yield
    logger = logging.getLogger("shellhook")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def _write_yaml(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _config_dir(tmp_path: Path, shell: str = "sh") -> Path:
    _write_yaml(
        tmp_path / "config.yml",
        f"""
binaries:
  search_dirs: []
  shell: "{shell}"
  superuser: "shellhook-no-such-su"
shell:
  poll_interval_seconds: 0.02
""",
    )
    return tmp_path


@needs_sh
def test_main_relays_output_and_exit_code(tmp_path: Path, capsys) -> None:
    config_dir = _config_dir(tmp_path)

    exit_code = main(["--config", str(config_dir), "echo", "hi;", "echo", "oops", ">&2;", "exit", "3"])

    captured = capsys.readouterr()
    assert exit_code == 3
    assert "hi" in captured.out.splitlines()
    assert "oops" in captured.err.splitlines()


@needs_sh
def test_main_respects_config_dir_env(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("SHELLHOOK_CONFIG_DIR", str(_config_dir(tmp_path)))

    exit_code = main(["true"])

    assert exit_code == 0


def test_main_reports_launch_failure(tmp_path: Path) -> None:
    config_dir = _config_dir(tmp_path, shell="shellhook-no-such-interpreter")

    assert main(["--config", str(config_dir), "true"]) == EXIT_LAUNCH_FAILED


def test_main_su_without_superuser_fails_launch(tmp_path: Path) -> None:
    config_dir = _config_dir(tmp_path)

    assert main(["--config", str(config_dir), "--su", "id"]) == EXIT_LAUNCH_FAILED


def test_main_returns_config_error(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "config.yml", "shell:\n  poll_interval_seconds: 0\n")

    assert main(["--config", str(tmp_path), "true"]) == EXIT_CONFIG_ERROR


@needs_sh
def test_main_writes_log_file(tmp_path: Path, monkeypatch) -> None:
    log_path = tmp_path / "logs" / "shellhook.log"
    monkeypatch.setenv("SHELLHOOK_LOG_PATH", str(log_path))

    main(["--config", str(_config_dir(tmp_path)), "--tag", "logcheck", "-v", "echo", "logged"])

    for handler in logging.getLogger("shellhook").handlers:
        handler.flush()
    content = log_path.read_text(encoding="utf-8")
    assert "shellhook.logcheck" in content
    assert "logged" in content


def test_build_shell_uses_config(tmp_path: Path) -> None:
    config = ConfigLoader(root_dir=_config_dir(tmp_path)).load()

    shell = build_shell(config, "built", "id", True, ShellHooks())

    assert shell.tag == "built"
    assert shell.sh_path == "sh"
    assert shell.su_path == "shellhook-no-such-su"
    assert shell.interpreter_path == "shellhook-no-such-su"


@pytest.mark.parametrize("content", ["binaries:\n", "logging: verbose\n"])
def test_main_returns_config_error_for_malformed_section(tmp_path: Path, content: str) -> None:
    _write_yaml(tmp_path / "config.yml", content)

    assert main(["--config", str(tmp_path), "true"]) == EXIT_CONFIG_ERROR


@needs_sh
def test_verbose_mirrors_lines_even_when_config_disables_it(tmp_path: Path, monkeypatch) -> None:
    _write_yaml(
        tmp_path / "config.yml",
        """
binaries:
  search_dirs: []
shell:
  log_lines: false
  poll_interval_seconds: 0.02
""",
    )
    log_path = tmp_path / "shellhook.log"
    monkeypatch.setenv("SHELLHOOK_LOG_PATH", str(log_path))

    main(["--config", str(tmp_path), "--tag", "mirror", "-v", "echo", "mirrored-line"])

    for handler in logging.getLogger("shellhook").handlers:
        handler.flush()
    assert "mirror-stdout: mirrored-line" in log_path.read_text(encoding="utf-8")


@needs_sh
def test_main_runs_in_working_dir_with_environment(tmp_path: Path, capsys) -> None:
    work = tmp_path / "work"
    work.mkdir()
    _write_yaml(
        tmp_path / "config.yml",
        f"""
binaries:
  search_dirs: []
shell:
  poll_interval_seconds: 0.02
  working_dir: "{work}"
  environment:
    SHELLHOOK_PROFILE: "office"
""",
    )

    exit_code = main(["--config", str(tmp_path), "pwd -P;", "echo", "$SHELLHOOK_PROFILE"])

    lines = capsys.readouterr().out.splitlines()
    assert exit_code == 0
    assert lines == [str(work.resolve()), "office"]
