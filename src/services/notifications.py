import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def notify(self, recipient: str, type: str, payload: dict[str, Any]) -> None: ...


class LoggingNotificationSink:
    async def notify(self, recipient: str, type: str, payload: dict[str, Any]) -> None:
        logger.info("Notification %s -> %s: %s", type, recipient, payload)
