from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: str | int = "INFO") -> None:
    """
    What it does:
    - Configures the root logger once for CLI runs.

    Behavior:
    - Accepts a level name ("INFO", "debug") or a logging constant.
    - Unknown names fall back to INFO.
    - Quiets chatty third-party loggers.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.strip().upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
