"""
Error taxonomy for the event ingestion pipeline.

The push receiver decides between acknowledging a message and asking the
broker to redeliver it purely from the kind of exception that reached it:

  MalformedMessageError   - bad envelope / payload / provenance.  Never enters
                            the processor chain; answered with 4xx.
  RetryableError          - transient condition signalled explicitly by a
                            processor or messenger.  Answered with 5xx so the
                            broker redelivers.
  anything else           - terminal.  Acknowledged, logged and published to
                            the failure topic.

Classification is by type only; error messages are never inspected.
"""

from typing import Iterable, Optional


class PmapError(Exception):
    """Base class for all pmap errors."""


class MalformedMessageError(PmapError):
    """The push request or its payload cannot be decoded."""


class RetryableError(PmapError):
    """
    A transient failure the broker should retry.

    Wraps an optional underlying cause, which is also chained as
    ``__cause__`` so tracebacks show the original error.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @classmethod
    def wrap(cls, exc: BaseException) -> "RetryableError":
        """Tag an existing exception as retryable."""
        if isinstance(exc, RetryableError):
            return exc
        return cls(f"pmap retryable err: {exc}", cause=exc)


class RequestCancelledError(RetryableError):
    """The handling attempt was cancelled (client gone or deadline passed)."""


class MessengerError(PmapError):
    """A messenger failed permanently to publish an event."""


class ValidationErrors(PmapError):
    """
    Aggregated validation failures.

    Every problem found is collected rather than stopping at the first one;
    ``str()`` renders one problem per line.
    """

    def __init__(self, errors: Iterable[str]):
        self.errors = list(errors)
        super().__init__("\n".join(self.errors))


def is_retryable(exc: Optional[BaseException]) -> bool:
    """
    Return True when exc is a RetryableError or explicitly wraps one.

    Only the explicit ``raise ... from ...`` chain (``__cause__``) is walked;
    an exception merely raised while handling another is not reclassified.
    """
    seen: set[int] = set()
    while exc is not None and id(exc) not in seen:
        if isinstance(exc, RetryableError):
            return True
        seen.add(id(exc))
        exc = exc.__cause__
    return False
