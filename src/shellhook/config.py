from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from shellhook.binaries import DEFAULT_SEARCH_DIRS


class ConfigError(ValueError):
    """Raised when configuration loading or validation fails."""


@dataclass(frozen=True)
class BinariesConfig:
    search_dirs: tuple[str, ...]
    shell: str
    superuser: str


@dataclass(frozen=True)
class ShellConfig:
    encoding: str
    log_lines: bool
    poll_interval_seconds: float
    working_dir: Optional[str]
    environment: Dict[str, str]


@dataclass(frozen=True)
class LoggingConfig:
    file_path: Optional[str]


@dataclass(frozen=True)
class AppConfig:
    binaries: BinariesConfig
    shell: ShellConfig
    logging: LoggingConfig


DEFAULTS: Dict[str, Any] = {
    "binaries": {
        "search_dirs": list(DEFAULT_SEARCH_DIRS),
        "shell": "sh",
        "superuser": "su",
    },
    "shell": {
        "encoding": "utf-8",
        "log_lines": True,
        "poll_interval_seconds": 0.1,
        "working_dir": None,
        "environment": {},
    },
    "logging": {
        "file_path": None,
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in override.items():
        if (
            key in merged
            and isinstance(merged[key], dict)
            and isinstance(value, dict)
        ):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Failed to read config file: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in config file: {path}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected mapping at root of config file: {path}")
    return data


class ConfigLoader:
    def __init__(self, root_dir: Path | None = None) -> None:
        self._root_dir = root_dir

    def load(self) -> AppConfig:
        root_dir = self._resolve_root_dir()

        # Every key has a default, so a missing config.yml is fine.
        merged: Dict[str, Any] = _deep_merge({}, DEFAULTS)
        config_path = root_dir / "config.yml"
        if config_path.exists():
            merged = _deep_merge(merged, _load_yaml(config_path))

        config_d = root_dir / "config.d"
        if config_d.exists():
            for path in sorted(config_d.glob("*.yml")):
                merged = _deep_merge(merged, _load_yaml(path))

        config = self._build_config(merged)
        self._validate(config)
        return config

    def _resolve_root_dir(self) -> Path:
        if self._root_dir is not None:
            return self._root_dir
        env_dir = os.getenv("SHELLHOOK_CONFIG_DIR")
        if env_dir:
            return Path(env_dir)
        return Path("/etc/shellhook")

    def _build_config(self, data: Dict[str, Any]) -> AppConfig:
        try:
            binaries_data = data["binaries"]
            shell_data = data["shell"]
            logging_data = data["logging"]
        except KeyError as exc:
            raise ConfigError(f"Missing config section: {exc.args[0]}") from exc
        for name, section in (
            ("binaries", binaries_data),
            ("shell", shell_data),
            ("logging", logging_data),
        ):
            if not isinstance(section, dict):
                raise ConfigError(f"Config section {name} must be a mapping")

        search_dirs = binaries_data.get("search_dirs") or []
        if not isinstance(search_dirs, (list, tuple)):
            raise ConfigError("binaries.search_dirs must be a list of directories")
        try:
            poll_interval = float(shell_data.get("poll_interval_seconds"))
        except (TypeError, ValueError) as exc:
            raise ConfigError(
                f"Invalid shell.poll_interval_seconds: {shell_data.get('poll_interval_seconds')}"
            ) from exc

        environment = shell_data.get("environment") or {}
        if not isinstance(environment, dict):
            raise ConfigError("shell.environment must be a mapping of variables")
        working_dir = shell_data.get("working_dir")

        file_path = logging_data.get("file_path")
        return AppConfig(
            binaries=BinariesConfig(
                search_dirs=tuple(str(item) for item in search_dirs),
                shell=str(binaries_data.get("shell") or ""),
                superuser=str(binaries_data.get("superuser") or ""),
            ),
            shell=ShellConfig(
                encoding=str(shell_data.get("encoding")),
                log_lines=bool(shell_data.get("log_lines")),
                poll_interval_seconds=poll_interval,
                working_dir=str(working_dir) if working_dir else None,
                environment={str(key): str(value) for key, value in environment.items()},
            ),
            logging=LoggingConfig(
                file_path=str(file_path) if file_path else None,
            ),
        )

    def _validate(self, config: AppConfig) -> None:
        self._validate_binaries(config.binaries)
        self._validate_shell(config.shell)

    def _validate_binaries(self, binaries: BinariesConfig) -> None:
        if not binaries.shell:
            raise ConfigError("binaries.shell is required")
        if not binaries.superuser:
            raise ConfigError("binaries.superuser is required")

    def _validate_shell(self, shell: ShellConfig) -> None:
        if shell.poll_interval_seconds <= 0:
            raise ConfigError(
                f"shell.poll_interval_seconds must be positive: {shell.poll_interval_seconds}"
            )
        try:
            newline = "\n".encode(shell.encoding)
        except LookupError as exc:
            raise ConfigError(f"Unknown shell.encoding: {shell.encoding}") from exc
        # LineReader splits raw bytes on b"\n".
        if newline != b"\n":
            raise ConfigError(f"shell.encoding must be ASCII-compatible: {shell.encoding}")
        if shell.working_dir is not None and not Path(shell.working_dir).is_dir():
            raise ConfigError(f"shell.working_dir does not exist: {shell.working_dir}")
