from __future__ import annotations

from dataclasses import dataclass
import os
import subprocess
from typing import BinaryIO, Dict, Mapping, Optional, Protocol


class ShellProcess(Protocol):
    stdin: BinaryIO
    stdout: BinaryIO
    stderr: BinaryIO

    @property
    def pid(self) -> int:
        ...

    def wait(self, timeout: float | None = None) -> int:
        ...


class ProcessLauncher(Protocol):
    def spawn(self, path: str) -> ShellProcess:
        """Start ``path`` with no arguments or raise ``OSError``."""
        ...


@dataclass
class SubprocessLauncher:
    env: Optional[Mapping[str, str]] = None
    cwd: Optional[str] = None

    def spawn(self, path: str) -> subprocess.Popen[bytes]:
        # All three channels are pipes; the caller owns draining and closing them.
        return subprocess.Popen(
            [path],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=self._build_env(),
            cwd=self.cwd,
        )

    def _build_env(self) -> Optional[Dict[str, str]]:
        # Extra variables are layered over the inherited environment.
        if not self.env:
            return None
        merged = os.environ.copy()
        merged.update(self.env)
        return merged
