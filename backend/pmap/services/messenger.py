"""
Messengers publish PmapEvents downstream.

A messenger's send() blocks until the broker acknowledges the event or
raises.  Transient broker failures are raised as RetryableError so the event
handler asks for redelivery; any other failure is a MessengerError.

Implementations:
  PubSubMessenger  - Google Cloud Pub/Sub topic
  NoopMessenger    - discards events (default failure messenger)
"""

import logging
from abc import ABC, abstractmethod
from concurrent import futures
from typing import Optional

from google.api_core import exceptions as google_exceptions
from google.cloud import pubsub_v1

from pmap.errors import MessengerError, RetryableError
from pmap.models.pubsub import PmapEvent

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.InternalServerError,
    google_exceptions.Aborted,
    google_exceptions.TooManyRequests,
    google_exceptions.RetryError,
    futures.TimeoutError,
    TimeoutError,
    ConnectionError,
)


class Messenger(ABC):
    """Sends an event downstream and waits for the broker to accept it."""

    @abstractmethod
    def send(self, event: PmapEvent, attributes: Optional[dict[str, str]] = None) -> None:
        """Publish event; raise on failure."""


class NoopMessenger(Messenger):
    def send(self, event: PmapEvent, attributes: Optional[dict[str, str]] = None) -> None:
        return None


class PubSubMessenger(Messenger):
    """
    Publishes events as JSON to a Pub/Sub topic.

    The PublisherClient is thread-safe, so one messenger serves every
    in-flight request.

    Args:
        project_id: Google Cloud project of the topic.
        topic_id:   Topic ID, or a full ``projects/.../topics/...`` path.
        timeout:    Seconds to wait for the publish to be acknowledged.
        client:     Optional pre-built PublisherClient (tests).
    """

    def __init__(
        self,
        project_id: str,
        topic_id: str,
        timeout: float = 30.0,
        client: Optional[pubsub_v1.PublisherClient] = None,
    ):
        self._client = client or pubsub_v1.PublisherClient()
        if topic_id.startswith("projects/") and "/topics/" in topic_id:
            self._topic_path = topic_id
        else:
            self._topic_path = self._client.topic_path(project_id, topic_id)
        self._timeout = timeout

    @property
    def topic_path(self) -> str:
        return self._topic_path

    def send(self, event: PmapEvent, attributes: Optional[dict[str, str]] = None) -> None:
        data = event.model_dump_json().encode("utf-8")
        attrs = {k: str(v) for k, v in (attributes or {}).items()}
        try:
            future = self._client.publish(self._topic_path, data, **attrs)
            message_id = future.result(timeout=self._timeout)
        except _TRANSIENT_ERRORS as e:
            raise RetryableError(
                f"pubsub: failed to publish to {self._topic_path}: {e}", cause=e
            )
        except Exception as e:
            raise MessengerError(
                f"pubsub: failed to publish to {self._topic_path}: {e}"
            ) from e

        logger.debug(f"Published event {message_id} to {self._topic_path}")

    def close(self) -> None:
        """Flush pending messages and stop the publisher."""
        self._client.stop()
