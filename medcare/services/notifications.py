"""
Notification trigger for appointment lifecycle events.

The engine only announces events; delivery (e-mail, push, SMS) is done by a
separate worker subscribed to the Redis channel. Dispatch is best-effort: a
failure is logged and never undoes the state change that caused it.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
import json
import logging

from ..core.config import settings
from ..core.database import get_redis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestCreated:
    request: Dict[str, Any]
    occurred_at: datetime = field(default_factory=datetime.utcnow)

    name = "request_created"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.name,
            "occurred_at": self.occurred_at.isoformat(),
            "request": self.request,
        }


@dataclass(frozen=True)
class RequestStatusChanged:
    request: Dict[str, Any]
    old_status: str
    new_status: str
    occurred_at: datetime = field(default_factory=datetime.utcnow)

    name = "request_status_changed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.name,
            "occurred_at": self.occurred_at.isoformat(),
            "old_status": self.old_status,
            "new_status": self.new_status,
            "request": self.request,
        }


class NotificationTrigger:
    """Base trigger. Subclasses implement :meth:`send`."""

    def send(self, event) -> None:
        raise NotImplementedError

    def fire(self, event) -> None:
        """Deliver ``event``, logging instead of raising on failure."""
        try:
            self.send(event)
        except Exception as e:
            logger.error(f"Failed to deliver {event.name} notification: {str(e)}")


class LoggingNotifier(NotificationTrigger):
    def send(self, event) -> None:
        logger.info(f"Notification {event.name}: {json.dumps(event.to_dict(), default=str)}")


class RedisNotifier(NotificationTrigger):
    """Publish events as JSON on a Redis pub/sub channel."""

    def __init__(self, redis_client, channel: Optional[str] = None):
        self.redis = redis_client
        self.channel = channel or settings.NOTIFICATION_CHANNEL

    def send(self, event) -> None:
        self.redis.publish(self.channel, json.dumps(event.to_dict(), default=str))


def get_notifier() -> NotificationTrigger:
    """Get the configured notification trigger."""
    if settings.NOTIFICATION_BACKEND == "redis":
        return RedisNotifier(get_redis())
    return LoggingNotifier()
