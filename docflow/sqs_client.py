"""
AWS SQS backend for the notification queue. Used instead of Redis when SQS_QUEUE_URL is set.
"""
import asyncio
import json
from typing import Any

import boto3

from docflow.config import settings

_sqs_client: Any = None


def _get_client():
    global _sqs_client
    if _sqs_client is None:
        _sqs_client = boto3.client("sqs", region_name=settings.aws_region)
    return _sqs_client


async def send_notification(body: dict) -> None:
    """Send one notification; event_type rides along as a message attribute so consumers can filter."""
    client = _get_client()
    await asyncio.to_thread(
        client.send_message,
        QueueUrl=settings.sqs_queue_url,
        MessageBody=json.dumps(body),
        MessageAttributes={
            "event_type": {"DataType": "String", "StringValue": body["event_type"]},
        },
    )


async def notification_backlog() -> int:
    """Messages waiting plus in flight, for the backlog gauge. 0 when SQS is not configured."""
    if not settings.sqs_queue_url:
        return 0
    client = _get_client()

    def _fetch() -> dict:
        r = client.get_queue_attributes(
            QueueUrl=settings.sqs_queue_url,
            AttributeNames=["ApproximateNumberOfMessages", "ApproximateNumberOfMessagesNotVisible"],
        )
        return r.get("Attributes") or {}

    attrs = await asyncio.to_thread(_fetch)
    return int(attrs.get("ApproximateNumberOfMessages", 0)) + int(attrs.get("ApproximateNumberOfMessagesNotVisible", 0))
