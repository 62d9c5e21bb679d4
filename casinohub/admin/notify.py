"""User-facing notifications (toasts) for admin actions."""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Short transient messages shown to the person driving the admin UI."""

    @abstractmethod
    def success(self, message: str) -> None: ...

    @abstractmethod
    def error(self, message: str) -> None: ...


class LoggingNotifier(Notifier):
    """Default notifier: writes messages to the log instead of a UI."""

    def success(self, message: str) -> None:
        logger.info("notify success: %s", message)

    def error(self, message: str) -> None:
        logger.warning("notify error: %s", message)
