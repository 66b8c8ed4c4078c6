"""
Push a notification message to the queue. Backend: Redis (LPUSH) or AWS SQS when SQS_QUEUE_URL is set.
"""
import time
import uuid

from docflow import redis_client, sqs_client
from docflow.config import settings


def _make_body(event_type: str, order_id: str, payload: dict) -> dict:
    return {
        "message_id": uuid.uuid4().hex,
        "event_type": event_type,
        "order_id": order_id,
        "payload": payload,
        "queued_at": time.time(),
    }


async def push_to_queue(event_type: str, order_id: str, payload: dict | None = None) -> None:
    body = _make_body(event_type, order_id, payload or {})
    if settings.sqs_queue_url:
        await sqs_client.send_notification(body)
    else:
        await redis_client.enqueue_notification(body)


async def queue_backlog() -> int:
    if settings.sqs_queue_url:
        return await sqs_client.notification_backlog()
    return await redis_client.notification_backlog()
