"""User notification sink for batched sync events."""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class Notifier(ABC):
    @abstractmethod
    def notify(self, title: str, body: str) -> None: ...


class LoggingNotifier(Notifier):
    """Writes notifications to the log instead of a desktop service."""

    def notify(self, title: str, body: str) -> None:
        logger.info(
            "%s: %s",
            title,
            body,
            extra={"event": "notification", "title": title, "body": body},
        )
