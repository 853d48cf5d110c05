"""
PubSubMessenger tests.

The Pub/Sub PublisherClient is always mocked; no network calls are made.

Coverage:
  - topic path built from project + topic id, or taken as-is when full
  - publish sends the event JSON and string attributes, waits for the ack
  - transient broker errors raise RetryableError, others MessengerError
  - close() stops the publisher
"""

import json
from concurrent import futures
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from google.api_core import exceptions as google_exceptions

from pmap.errors import MessengerError, RetryableError, is_retryable
from pmap.models.pubsub import PmapEvent
from pmap.models.resource_mapping import ResourceMapping
from pmap.services.messenger import NoopMessenger, PubSubMessenger


def _event() -> PmapEvent:
    return PmapEvent(
        payload=ResourceMapping.model_validate({
            "resource": {"provider": "gcp", "name": "//r/1"},
            "contacts": {"email": ["a@b.com"]},
        }),
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def _client(result=None, error=None) -> MagicMock:
    client = MagicMock()
    client.topic_path.side_effect = lambda p, t: f"projects/{p}/topics/{t}"
    future = MagicMock()
    if error is not None:
        future.result.side_effect = error
    else:
        future.result.return_value = result or "server-id-1"
    client.publish.return_value = future
    return client


class TestTopicPath:

    def test_built_from_project_and_topic(self):
        messenger = PubSubMessenger("p1", "success", client=_client())
        assert messenger.topic_path == "projects/p1/topics/success"

    def test_full_path_used_as_is(self):
        client = _client()
        messenger = PubSubMessenger("ignored", "projects/p2/topics/t2", client=client)
        assert messenger.topic_path == "projects/p2/topics/t2"
        client.topic_path.assert_not_called()

    def test_default_client_is_publisher_client(self):
        with patch("pmap.services.messenger.pubsub_v1.PublisherClient") as mock_cls:
            mock_cls.return_value = _client()
            messenger = PubSubMessenger("p1", "t1")
        mock_cls.assert_called_once_with()
        assert messenger.topic_path == "projects/p1/topics/t1"


class TestSend:

    def test_publishes_event_json_with_attributes(self):
        client = _client()
        messenger = PubSubMessenger("p1", "t1", timeout=5.0, client=client)

        messenger.send(_event(), {"resourceName": "//r/1", "attempt": 2})

        args, kwargs = client.publish.call_args
        assert args[0] == "projects/p1/topics/t1"
        body = json.loads(args[1].decode("utf-8"))
        assert body["payload"]["resource"]["name"] == "//r/1"
        assert body["type"] == "ResourceMapping"
        assert kwargs == {"resourceName": "//r/1", "attempt": "2"}
        client.publish.return_value.result.assert_called_once_with(timeout=5.0)

    def test_no_attributes(self):
        client = _client()
        PubSubMessenger("p1", "t1", client=client).send(_event())
        _, kwargs = client.publish.call_args
        assert kwargs == {}

    @pytest.mark.parametrize(
        "error",
        [
            google_exceptions.ServiceUnavailable("unavailable"),
            google_exceptions.DeadlineExceeded("deadline"),
            google_exceptions.InternalServerError("internal"),
            futures.TimeoutError(),
            ConnectionError("reset"),
        ],
    )
    def test_transient_errors_are_retryable(self, error):
        messenger = PubSubMessenger("p1", "t1", client=_client(error=error))

        with pytest.raises(RetryableError) as exc_info:
            messenger.send(_event())

        assert is_retryable(exc_info.value)
        assert exc_info.value.cause is error

    @pytest.mark.parametrize(
        "error",
        [
            google_exceptions.NotFound("topic not found"),
            google_exceptions.PermissionDenied("denied"),
            ValueError("bad attribute"),
        ],
    )
    def test_permanent_errors_are_messenger_errors(self, error):
        messenger = PubSubMessenger("p1", "t1", client=_client(error=error))

        with pytest.raises(MessengerError) as exc_info:
            messenger.send(_event())

        assert not is_retryable(exc_info.value)
        assert "projects/p1/topics/t1" in str(exc_info.value)

    def test_publish_call_itself_failing(self):
        client = _client()
        client.publish.side_effect = google_exceptions.ServiceUnavailable("down")
        with pytest.raises(RetryableError):
            PubSubMessenger("p1", "t1", client=client).send(_event())


class TestLifecycle:

    def test_close_stops_client(self):
        client = _client()
        PubSubMessenger("p1", "t1", client=client).close()
        client.stop.assert_called_once_with()

    def test_noop_messenger_discards(self):
        assert NoopMessenger().send(_event(), {"a": "b"}) is None
