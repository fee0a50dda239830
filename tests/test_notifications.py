import json

import redis

from medcare.core.config import settings
from medcare.core.database import redis_client
from medcare.services.notifications import RedisNotifier, RequestStatusChanged


class StubRedis:
    def __init__(self, error=None):
        self.published = []
        self.error = error

    def publish(self, channel, message):
        if self.error:
            raise self.error
        self.published.append((channel, message))


def _event():
    return RequestStatusChanged(request={"id": 7, "status": "approved"}, old_status="pending", new_status="confirmed")


def test_redis_client_has_short_timeouts():
    """An unreachable broker must fail fast instead of stalling the request."""
    kwargs = redis_client.connection_pool.connection_kwargs
    assert kwargs["socket_connect_timeout"] == settings.REDIS_SOCKET_CONNECT_TIMEOUT
    assert kwargs["socket_timeout"] == settings.REDIS_SOCKET_TIMEOUT


def test_redis_notifier_publishes_json():
    stub = StubRedis()
    RedisNotifier(stub, channel="medcare:test").fire(_event())

    channel, message = stub.published[0]
    assert channel == "medcare:test"
    body = json.loads(message)
    assert body["event"] == "request_status_changed"
    assert body["new_status"] == "confirmed"
    assert body["request"]["id"] == 7


def test_redis_timeout_is_logged_not_raised(caplog):
    stub = StubRedis(error=redis.exceptions.TimeoutError("Timeout connecting to server"))
    RedisNotifier(stub).fire(_event())

    assert stub.published == []
    assert "Failed to deliver request_status_changed" in caplog.text
