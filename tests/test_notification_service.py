"""
Notification service tests: receipts are logged and published best effort.
"""
import json
from unittest.mock import MagicMock

import pika
import pytest
from fastapi.testclient import TestClient

from notification_service.app import main
from notification_service.app.main import RECEIPT_ROUTING_KEY, app, get_publisher
from notification_service.app.messaging import bus
from notification_service.app.messaging.bus import RabbitMQPublisher


def open_connection():
    """A pika connection double whose connection and channel are both open."""
    connection = MagicMock(is_closed=False)
    connection.channel.return_value.is_closed = False
    return connection


class FakePublisher:
    def __init__(self, error=None):
        self.published = []
        self.error = error

    def publish(self, routing_key, message):
        if self.error is not None:
            raise self.error
        self.published.append((routing_key, message))


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def client(publisher):
    app.dependency_overrides[get_publisher] = lambda: publisher
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestReceiptEndpoint:
    def test_receipt_is_published(self, client, publisher):
        resp = client.post("/api/v1/notifications/receipts", json={"order_id": "abc", "user_id": "u1"})

        assert resp.status_code == 200
        assert resp.json() == {"ok": True}
        assert publisher.published == [(RECEIPT_ROUTING_KEY, {"order_id": "abc", "user_id": "u1"})]

    def test_broker_failure_is_reported_not_raised(self, client, publisher):
        publisher.error = pika.exceptions.AMQPConnectionError("broker down")

        resp = client.post("/api/v1/notifications/receipts", json={"order_id": "abc", "user_id": "u1"})

        assert resp.status_code == 200
        assert resp.json() == {"ok": False}

    def test_missing_fields_are_rejected(self, client):
        resp = client.post("/api/v1/notifications/receipts", json={"order_id": "abc"})

        assert resp.status_code == 422


class TestRabbitMQPublisher:
    def test_connects_lazily_and_publishes_persistent_json(self, monkeypatch):
        connection = open_connection()
        factory = MagicMock(return_value=connection)
        monkeypatch.setattr(bus.pika, "BlockingConnection", factory)

        publisher = RabbitMQPublisher(host="rabbit")
        factory.assert_not_called()

        publisher.publish("receipt.sent", {"order_id": "abc"})
        publisher.publish("receipt.sent", {"order_id": "def"})

        assert factory.call_count == 1
        channel = connection.channel.return_value
        channel.exchange_declare.assert_called_once_with(exchange="events", exchange_type="topic", durable=True)
        kwargs = channel.basic_publish.call_args_list[0].kwargs
        assert kwargs["exchange"] == "events"
        assert kwargs["routing_key"] == "receipt.sent"
        assert json.loads(kwargs["body"]) == {"order_id": "abc"}
        assert kwargs["properties"].delivery_mode == 2

    def test_gives_up_after_bounded_attempts(self, monkeypatch):
        factory = MagicMock(side_effect=pika.exceptions.AMQPConnectionError("refused"))
        monkeypatch.setattr(bus.pika, "BlockingConnection", factory)
        monkeypatch.setattr(bus.time, "sleep", lambda seconds: None)

        publisher = RabbitMQPublisher(host="rabbit", connect_attempts=3)

        with pytest.raises(pika.exceptions.AMQPConnectionError):
            publisher.publish("receipt.sent", {"order_id": "abc"})
        assert factory.call_count == 3

    def test_closed_channel_on_open_connection_is_reopened(self, monkeypatch):
        connection = open_connection()
        first, fresh = MagicMock(is_closed=False), MagicMock(is_closed=False)
        connection.channel.side_effect = [first, fresh]
        factory = MagicMock(return_value=connection)
        monkeypatch.setattr(bus.pika, "BlockingConnection", factory)
        publisher = RabbitMQPublisher(host="rabbit")
        publisher.publish("receipt.sent", {"order_id": "abc"})

        # the broker closes the channel but keeps the connection
        first.is_closed = True
        for order_id in ("def", "ghi", "jkl"):
            publisher.publish("receipt.sent", {"order_id": order_id})

        assert factory.call_count == 1
        assert connection.channel.call_count == 2
        first.basic_publish.assert_called_once()
        assert fresh.basic_publish.call_count == 3
        fresh.exchange_declare.assert_called_once_with(exchange="events", exchange_type="topic", durable=True)

    def test_lost_connection_reconnects(self, monkeypatch):
        first, second = open_connection(), open_connection()
        factory = MagicMock(side_effect=[first, second])
        monkeypatch.setattr(bus.pika, "BlockingConnection", factory)
        publisher = RabbitMQPublisher(host="rabbit")

        publisher.publish("receipt.sent", {"order_id": "abc"})
        first.is_closed = True
        publisher.publish("receipt.sent", {"order_id": "def"})

        assert factory.call_count == 2
        second.channel.return_value.basic_publish.assert_called_once()

    def test_close_only_closes_open_connection(self):
        publisher = RabbitMQPublisher(host="rabbit")
        publisher.close()

        connection = open_connection()
        publisher.connection = connection
        publisher.close()
        connection.close.assert_called_once()
        assert publisher.connection is None
        assert publisher.channel is None


class TestLifespan:
    def test_shutdown_closes_publisher(self, monkeypatch):
        closing = MagicMock()
        monkeypatch.setattr(main, "publisher", closing)

        with TestClient(app) as client:
            assert client.get("/").status_code == 200
            closing.close.assert_not_called()

        closing.close.assert_called_once_with()
