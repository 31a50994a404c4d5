from __future__ import annotations

from typing import Any


class MeshfeedError(Exception):
    """Base class for errors raised by the synchronization engine."""

    retryable = False


class TransportError(MeshfeedError):
    """The daemon could not be reached, or did not answer in time."""

    retryable = True


class ProtocolError(MeshfeedError):
    """The daemon answered with something we cannot use.

    Retrying without intervention will not help: malformed json, an unexpected
    response shape, a rejected request or failed authentication.
    """

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class StaleTokenError(ProtocolError):
    """The continuation token is no longer known to the daemon."""


class SourceError(MeshfeedError):
    """A list source raised something other than a MeshfeedError.

    This points at a bug in the source rather than at the daemon; the original
    exception is chained as `__cause__`.
    """


class WorkQueueFull(MeshfeedError):
    """The worker pool rejected a submission because its queue is full."""

    retryable = True


class ObserverFault(MeshfeedError):
    def __init__(self, observer: Any, error: BaseException) -> None:
        super().__init__(f"observer {observer!r} failed: {error}")
        self.observer = observer
        self.error = error
