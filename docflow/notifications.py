"""
Notification trigger. Fire-and-forget: a failure to queue a notification is logged and counted,
never raised back into the state transition that produced it.
"""
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from enum import Enum

from docflow.metrics import notifications_failed_total, notifications_sent_total
from docflow.queue import push_to_queue

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    ORDER_CONFIRMED = "ORDER_CONFIRMED"
    DELEGATE_ASSIGNED = "DELEGATE_ASSIGNED"
    DOCUMENT_READY = "DOCUMENT_READY"
    DOCUMENT_SHIPPED = "DOCUMENT_SHIPPED"
    DISPATCH_FAILED = "DISPATCH_FAILED"
    DELIVERY_PICKED_UP = "DELIVERY_PICKED_UP"
    DELIVERY_COMPLETED = "DELIVERY_COMPLETED"


class Notifier(ABC):
    @abstractmethod
    async def notify(self, event: NotificationEvent, order_id: str, payload: dict | None = None) -> None: ...


class QueueNotifier(Notifier):
    """Hands notifications to the Redis/SQS queue; push/SMS delivery happens downstream."""

    def __init__(self, push: Callable[[str, str, dict | None], Awaitable[None]] = push_to_queue):
        self._push = push

    async def notify(self, event: NotificationEvent, order_id: str, payload: dict | None = None) -> None:
        try:
            await self._push(event.value, order_id, payload)
        except Exception as e:
            notifications_failed_total.labels(event=event.value).inc()
            logger.warning("Notification %s for order_id=%s not queued: %s", event.value, order_id, e)
            return
        notifications_sent_total.labels(event=event.value).inc()
        logger.info("Queued %s for order_id=%s", event.value, order_id)
