"""Diagnostic events and logging setup.

Components never call ``print`` or a logger directly for tracing; they emit
named events through an :class:`Observer`.  The default observer writes to the
standard :mod:`logging` tree, tests inject their own to assert on events.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


class Observer(Protocol):
    def emit(self, event: str, level: int = logging.INFO, **fields: Any) -> None:
        ...


class LoggingObserver:
    """Forward events to a :class:`logging.Logger` as ``event key=value``."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger("xrpl_monitor")

    def emit(self, event: str, level: int = logging.INFO, **fields: Any) -> None:
        if not self.logger.isEnabledFor(level):
            return
        parts = " ".join(f"{k}={v}" for k, v in fields.items())
        if parts:
            self.logger.log(level, "%s %s", event, parts)
        else:
            self.logger.log(level, "%s", event)


class _MonitorHandler(logging.StreamHandler):
    pass


def init_logging(level: str | int = "INFO") -> None:
    """Attach one stream handler to the root logger.

    Safe to call repeatedly; only the level is updated on later calls.
    """

    root = logging.getLogger()
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root.setLevel(level)
    for handler in root.handlers:
        if isinstance(handler, _MonitorHandler):
            handler.setLevel(level)
            return
    handler = _MonitorHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
