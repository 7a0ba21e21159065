from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from typing import Callable, Sequence


DEFAULT_SEARCH_DIRS: tuple[str, ...] = ("/system/bin", "/system/xbin")


@dataclass(frozen=True)
class BinaryResolver:
    search_dirs: Sequence[str] = DEFAULT_SEARCH_DIRS
    exists: Callable[[str], bool] = os.path.exists

    def resolve(self, name: str) -> str:
        for directory in self.search_dirs:
            path = os.path.join(directory, name)
            if self.exists(path):
                return path
        # A bare name still lets the OS search PATH at spawn time.
        logging.getLogger(self.__class__.__name__).debug(
            "No %s in %s; falling back to bare name", name, list(self.search_dirs)
        )
        return name
