"""Logging setup for the ``silicon-chat`` CLI and the desktop example."""

from __future__ import annotations

import logging
import sys

_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(verbose: int = 0) -> None:
    """Attach a stderr handler to the ``silicon_chat`` logger for CLI and app use.

    ``verbose`` 0 shows warnings, 1 info, 2+ debug. The root logger is left alone.
    Calling it again replaces the handler, so output follows the current
    ``sys.stderr``.
    """
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    logger = logging.getLogger("silicon_chat")
    logger.setLevel(level)
    for stale in [h for h in logger.handlers if getattr(h, "_silicon_chat", False)]:
        logger.removeHandler(stale)

    handler = logging.StreamHandler(sys.stderr)
    handler._silicon_chat = True
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(handler)
