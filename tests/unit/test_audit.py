"""
Unit tests for the audit event publisher.

Publishing is best-effort: Redis failures are logged and swallowed.
"""
import json
from unittest.mock import MagicMock

import redis

from app.services.audit import AuditPublisher


def make_publisher(client=None) -> AuditPublisher:
    return AuditPublisher(client=client or MagicMock(), channel="audit:test")


class TestAuditPublisher:
    def test_publish_sends_json_to_channel(self):
        client = MagicMock()
        publisher = make_publisher(client)

        assert publisher.publish("login", "user-1", sessionId="abc") is True

        channel, message = client.publish.call_args[0]
        assert channel == "audit:test"
        payload = json.loads(message)
        assert payload["event"] == "login"
        assert payload["userId"] == "user-1"
        assert payload["data"] == {"sessionId": "abc"}
        assert "timestamp" in payload

    def test_redis_error_is_swallowed(self, caplog):
        client = MagicMock()
        client.publish.side_effect = redis.ConnectionError("refused")
        publisher = make_publisher(client)

        assert publisher.publish("logout", "user-1") is False
        assert "Failed to publish audit event logout" in caplog.text

    def test_os_error_is_swallowed(self):
        client = MagicMock()
        client.publish.side_effect = OSError("network down")

        assert make_publisher(client).login("user-1", "abc", method="password") is False

    def test_role_switch_payload(self):
        client = MagicMock()
        make_publisher(client).role_switch("user-1", "USER", "INSTRUCTOR", "new-session")

        payload = json.loads(client.publish.call_args[0][1])
        assert payload["event"] == "role_switch"
        assert payload["data"] == {
            "fromRole": "USER",
            "toRole": "INSTRUCTOR",
            "sessionId": "new-session",
        }

    def test_anonymous_event(self):
        client = MagicMock()
        make_publisher(client).publish("cleanup")

        assert json.loads(client.publish.call_args[0][1])["userId"] is None
