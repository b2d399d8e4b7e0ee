"""Logging setup for the marginalia logger hierarchy."""

import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

_handler: logging.Handler | None = None


def configure_logging(level: int | str = logging.WARNING, stream=None) -> logging.Logger:
    """
    Send marginalia.* records to stderr (or `stream`) with ISO timestamps.

    Safe to call more than once; the handler is replaced, never duplicated.
    """
    global _handler

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    root = logging.getLogger("marginalia")
    root.setLevel(level)
    if _handler is not None:
        root.removeHandler(_handler)
    _handler = logging.StreamHandler(stream or sys.stderr)
    _handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    root.addHandler(_handler)
    return root
