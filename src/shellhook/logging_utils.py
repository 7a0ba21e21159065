from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(threadName)s] - %(message)s"


class LoggerFactory:
    @staticmethod
    def create(
        name: str,
        log_file: Optional[Union[str, Path]] = None,
        *,
        level: int = logging.INFO,
    ) -> logging.Logger:
        logger = logging.getLogger(name)
        # Reader threads log under child loggers, so the level is always refreshed.
        logger.setLevel(level)
        if logger.handlers:
            return logger

        formatter = logging.Formatter(LOG_FORMAT)

        # stderr keeps diagnostics apart from relayed interpreter stdout.
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

        if log_file is not None:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_path, maxBytes=1_000_000, backupCount=3
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

        return logger
