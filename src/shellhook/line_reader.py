from __future__ import annotations

import logging
from threading import Thread
from typing import BinaryIO, Callable, Optional


class LineReader(Thread):
    """Drain one process channel on its own thread.

    Each line is decoded, stripped of its terminator and handed to
    ``on_line``; the next read only starts once the callback returned, so a
    single channel is always delivered in order. The thread ends at
    end-of-stream or on the first read error and closes the stream on its
    way out. Nothing it encounters is re-raised: the process exit code is
    what tells callers whether the command worked.
    """

    def __init__(
        self,
        name: str,
        stream: BinaryIO,
        on_line: Callable[[str], None],
        *,
        log_lines: bool = False,
        encoding: str = "utf-8",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(name=name, daemon=True)
        self._stream = stream
        self._on_line = on_line
        self._log_lines = log_lines
        self._encoding = encoding
        self._logger = logger or logging.getLogger(self.__class__.__name__)
        self.lines_read = 0

    def run(self) -> None:
        try:
            self._read_until_eof()
        finally:
            self._close_stream()

    def _read_until_eof(self) -> None:
        while True:
            try:
                raw = self._stream.readline()
            except (OSError, ValueError) as exc:
                self._logger.warning("%s: read failed, stopping: %s", self.name, exc)
                return
            if not raw:
                self._logger.debug("%s: end of stream after %s lines", self.name, self.lines_read)
                return
            self._deliver(self._decode(raw))

    def _decode(self, raw: bytes) -> str:
        line = raw.decode(self._encoding, errors="replace")
        if line.endswith("\n"):
            line = line[:-1]
            if line.endswith("\r"):
                line = line[:-1]
        return line

    def _deliver(self, line: str) -> None:
        self.lines_read += 1
        if self._log_lines:
            self._logger.debug("%s: %s", self.name, line)
        try:
            self._on_line(line)
        except Exception:
            # Keep draining; a stalled pipe would block the process.
            self._logger.exception("%s: line handler raised", self.name)

    def _close_stream(self) -> None:
        try:
            self._stream.close()
        except OSError as exc:
            self._logger.debug("%s: close failed: %s", self.name, exc)
