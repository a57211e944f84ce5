"""User-facing notification sink.

The pipeline only decides when a notification fires; how it is shown
(toast, console line, nothing) belongs to the caller.
"""
from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class Notifier:
    def info(self, message: str) -> None:
        logger.info(message)

    def success(self, message: str) -> None:
        logger.info(message)

    def warning(self, message: str) -> None:
        logger.warning(message)

    def error(self, message: str) -> None:
        logger.error(message)


class SilentNotifier(Notifier):
    def info(self, message: str) -> None:
        return None

    def success(self, message: str) -> None:
        return None

    def warning(self, message: str) -> None:
        return None

    def error(self, message: str) -> None:
        return None
