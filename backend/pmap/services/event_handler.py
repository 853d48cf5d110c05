"""
Event handler: runs the processor chain for one ResourceMapping and decides
what the broker should do with the message.

Per delivery attempt:

  ChainExecuting ──ok──► Publishing (success topic) ──► SUCCESS
        │                       └─ send fails ──► RETRYABLE / TERMINAL
        └─ processor raises
              ├─ RetryableError ──► RETRYABLE_FAILURE (nothing published)
              └─ anything else  ──► failure topic ──► TERMINAL_FAILURE

Each redelivery runs from scratch; no state survives an attempt.  Processors
must therefore be idempotent.
"""

import enum
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence

from pmap.errors import RequestCancelledError, is_retryable
from pmap.models.pubsub import GitHubSource, PmapEvent
from pmap.models.resource_mapping import ResourceMapping
from pmap.services.messenger import Messenger, NoopMessenger

logger = logging.getLogger(__name__)

# Attribute carrying the failure reason on events sent to the failure topic.
ATTR_KEY_PROCESS_ERR = "ProcessErr"


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

class CancellationToken:
    """
    Thread-safe cancellation flag with an optional deadline.

    The push router cancels it when the client disconnects; the deadline
    (monotonic seconds from creation) covers broker ack deadlines.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._event = threading.Event()
        self._reason = ""
        self._deadline = time.monotonic() + timeout if timeout else None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("deadline exceeded")
            return True
        return False

    @property
    def reason(self) -> str:
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RequestCancelledError(f"request cancelled: {self._reason}")


# ---------------------------------------------------------------------------
# Processor contract
# ---------------------------------------------------------------------------

@dataclass
class ProcessMetadata:
    """Mutable side-channel data handed to every processor with the record."""

    message_id: str = ""
    publish_time: Optional[datetime] = None
    attributes: dict[str, str] = field(default_factory=dict)
    github_source: Optional[GitHubSource] = None
    cancellation: CancellationToken = field(default_factory=CancellationToken)

    @property
    def bucket_id(self) -> str:
        return self.attributes.get("bucketId", "")

    @property
    def object_id(self) -> str:
        return self.attributes.get("objectId", "")


class Processor(ABC):
    """
    One unit of side-effecting work on a ResourceMapping.

    Implementations must not mutate the mapping, must be safe to call from
    several threads at once, and should raise RetryableError (or raise from
    one) for transient failures; every other exception is terminal.
    """

    @abstractmethod
    def process(self, mapping: ResourceMapping, metadata: ProcessMetadata) -> None:
        ...


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------

class OutcomeKind(str, enum.Enum):
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    TERMINAL_FAILURE = "terminal_failure"


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    cause: Optional[BaseException] = None

    @classmethod
    def success(cls) -> "Outcome":
        return cls(OutcomeKind.SUCCESS)

    @classmethod
    def classify(cls, exc: BaseException) -> "Outcome":
        if is_retryable(exc):
            return cls(OutcomeKind.RETRYABLE_FAILURE, exc)
        return cls(OutcomeKind.TERMINAL_FAILURE, exc)

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------

class ChainError(Exception):
    """A processor in the chain failed; the processor's error is the cause."""

    def __init__(self, processor_name: str, err: Exception):
        super().__init__(f"{processor_name}: {err}")
        self.processor_name = processor_name


class EventHandler:
    """
    Runs processors in order against a mapping and publishes the result.

    Built once at startup and shared by all requests; it holds no per-request
    state.

    Args:
        processors:        Ordered processor chain (may be empty).
        success_messenger: Receives an event for every fully processed mapping.
        failure_messenger: Receives an event for every terminal failure.
                           Defaults to NoopMessenger.
    """

    def __init__(
        self,
        processors: Sequence[Processor],
        success_messenger: Messenger,
        failure_messenger: Optional[Messenger] = None,
    ):
        if success_messenger is None:
            raise ValueError("success_messenger cannot be None")
        self._processors = list(processors)
        self._success_messenger = success_messenger
        self._failure_messenger = failure_messenger or NoopMessenger()

    @property
    def processors(self) -> list[Processor]:
        return list(self._processors)

    def handle(self, mapping: ResourceMapping, metadata: ProcessMetadata) -> Outcome:
        """Handle one delivery attempt and classify it.  Never raises."""
        try:
            self._run_chain(mapping, metadata)
        except ChainError as e:
            return self._handle_chain_failure(
                mapping, metadata, e.processor_name, e.__cause__ or e
            )

        try:
            metadata.cancellation.raise_if_cancelled()
            self._success_messenger.send(
                self._build_event(mapping, metadata), self._event_attributes(mapping)
            )
        except Exception as e:
            outcome = Outcome.classify(e)
            logger.error(
                f"Failed to send success event for {mapping.resource.name!r} "
                f"({outcome.kind.value}): {e}"
            )
            return outcome

        logger.info(
            f"Processed resource mapping {mapping.resource.name!r} "
            f"(message {metadata.message_id or '-'})"
        )
        return Outcome.success()

    def _run_chain(self, mapping: ResourceMapping, metadata: ProcessMetadata) -> None:
        for processor in self._processors:
            try:
                metadata.cancellation.raise_if_cancelled()
                processor.process(mapping, metadata)
            except Exception as e:
                raise ChainError(type(processor).__name__, e) from e

    def _handle_chain_failure(
        self,
        mapping: ResourceMapping,
        metadata: ProcessMetadata,
        processor_name: str,
        err: BaseException,
    ) -> Outcome:
        outcome = Outcome.classify(err)
        if outcome.kind is OutcomeKind.RETRYABLE_FAILURE:
            logger.warning(
                f"Retryable failure in {processor_name} processing "
                f"{mapping.resource.name!r}: {err}"
            )
            return outcome

        # Terminal: the broker will not redeliver, so record it loudly.
        logger.error(
            f"{processor_name} failed to process resource mapping "
            f"{mapping.resource.name!r}: {err} "
            f"(bucketId={metadata.bucket_id!r}, objectId={metadata.object_id!r})",
            exc_info=err,
        )
        attrs = self._event_attributes(mapping)
        attrs[ATTR_KEY_PROCESS_ERR] = f"failed to process object: {processor_name}: {err}"
        try:
            self._failure_messenger.send(self._build_event(mapping, metadata), attrs)
        except Exception as e:
            logger.error(f"Failed to send failure event downstream: {e}")
            return Outcome.classify(e)
        return outcome

    @staticmethod
    def _build_event(mapping: ResourceMapping, metadata: ProcessMetadata) -> PmapEvent:
        return PmapEvent(
            payload=mapping,
            timestamp=datetime.now(timezone.utc),
            github_source=metadata.github_source,
        )

    @staticmethod
    def _event_attributes(mapping: ResourceMapping) -> dict[str, str]:
        return {
            "resourceName": mapping.resource.name,
            "provider": mapping.resource.provider,
        }

    def close(self) -> None:
        """Stop processors and messengers that hold clients."""
        components = [*self._processors, self._success_messenger, self._failure_messenger]
        for component in components:
            stop = getattr(component, "stop", None) or getattr(component, "close", None)
            if stop is None:
                continue
            try:
                stop()
            except Exception as e:
                logger.warning(f"Failed to stop {type(component).__name__}: {e}")
