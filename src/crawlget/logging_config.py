from __future__ import annotations

import logging
import sys

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_FORMAT_SHORT = "%(levelname)s: %(message)s"


def level_for(verbosity: int) -> int:
    """-q -> ERROR, default -> WARNING, -v -> INFO, -vv -> DEBUG."""

    if verbosity < 0:
        return logging.ERROR
    if verbosity == 0:
        return logging.WARNING
    if verbosity == 1:
        return logging.INFO
    return logging.DEBUG


def configure_logging(verbosity: int = 0) -> None:
    level = level_for(verbosity)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(_FORMAT if level <= logging.DEBUG else _FORMAT_SHORT)
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)

    # Connection-pool chatter drowns out per-download messages.
    logging.getLogger("urllib3").setLevel(logging.WARNING)
