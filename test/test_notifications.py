import json

import pytest

from docflow import queue, redis_client, sqs_client
from docflow.notifications import NotificationEvent, Notifier, QueueNotifier

from _helper import run


class FakeRedis:
    def __init__(self):
        self.lists = {}

    async def lpush(self, key, value):
        self.lists.setdefault(key, []).insert(0, value)


def test_notifier_pushes_event_name():
    pushed = []

    async def push(event_type, order_id, payload):
        pushed.append((event_type, order_id, payload))

    run(QueueNotifier(push=push).notify(NotificationEvent.DOCUMENT_READY, "order-1", {"k": "v"}))

    assert pushed == [("DOCUMENT_READY", "order-1", {"k": "v"})]


def test_failed_push_is_logged_not_raised(caplog):
    async def push(event_type, order_id, payload):
        raise ConnectionError("redis down")

    run(QueueNotifier(push=push).notify(NotificationEvent.DISPATCH_FAILED, "order-2"))

    assert "DISPATCH_FAILED" in caplog.text
    assert "redis down" in caplog.text


def test_push_to_redis(monkeypatch):
    fake = FakeRedis()

    async def get_redis():
        return fake

    monkeypatch.setattr(redis_client, "get_redis", get_redis)
    monkeypatch.setattr(queue.settings, "sqs_queue_url", None)

    run(queue.push_to_queue("DELEGATE_ASSIGNED", "order-3", {"delegate_id": "del-1"}))

    (raw,) = fake.lists[queue.settings.notification_queue_key]
    body = json.loads(raw)
    assert body["event_type"] == "DELEGATE_ASSIGNED"
    assert body["order_id"] == "order-3"
    assert body["payload"] == {"delegate_id": "del-1"}
    assert set(body) == {"message_id", "event_type", "order_id", "payload", "queued_at"}


def test_push_to_sqs_when_configured(monkeypatch):
    sent = []

    async def send_notification(body):
        sent.append(body)

    monkeypatch.setattr(sqs_client, "send_notification", send_notification)
    monkeypatch.setattr(queue.settings, "sqs_queue_url", "https://sqs.example/queue")

    run(queue.push_to_queue("ORDER_CONFIRMED", "order-4"))

    assert sent[0]["event_type"] == "ORDER_CONFIRMED"
    assert sent[0]["payload"] == {}


def test_backlog_reads_the_active_backend(monkeypatch):
    async def redis_backlog():
        return 2

    async def sqs_backlog():
        return 7

    monkeypatch.setattr(redis_client, "notification_backlog", redis_backlog)
    monkeypatch.setattr(sqs_client, "notification_backlog", sqs_backlog)

    monkeypatch.setattr(queue.settings, "sqs_queue_url", None)
    assert run(queue.queue_backlog()) == 2
    monkeypatch.setattr(queue.settings, "sqs_queue_url", "https://sqs.example/queue")
    assert run(queue.queue_backlog()) == 7


def test_notifier_is_abstract():
    with pytest.raises(TypeError):
        Notifier()
