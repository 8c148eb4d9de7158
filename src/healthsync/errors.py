"""Error taxonomy and the typed result returned by every transport operation.

Transports catch their own faults and hand the coordinator a ``Result``;
the coordinator never sees a raw exception from a sync attempt.  Each
``TransportError`` subclass says whether retrying the same payload can help.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Generic, TypeVar

T = TypeVar("T")


class SyncError(Exception):
    """Base class for all HealthSync errors."""


class TransportError(SyncError):
    """A transport operation failed.

    Attributes:
        kind:      Stable category slug used in logs and status messages.
        retryable: True if the next cycle may succeed with the same payload.
    """

    kind: ClassVar[str] = "transport"
    retryable: ClassVar[bool] = True


class TransportUnavailableError(TransportError):
    """The transport is offline or not connected.  No I/O was attempted."""

    kind = "unavailable"
    retryable = True


class NetworkError(TransportError):
    """Timeout, connection reset, or a failed radio write/read."""

    kind = "network"
    retryable = True


class InvalidAddressError(TransportError):
    """The server host or port does not form a valid URL.  No I/O was attempted."""

    kind = "invalid_address"
    retryable = False


class BadRequestError(TransportError):
    """The remote side rejected the payload shape (HTTP 400)."""

    kind = "bad_request"
    retryable = False


class ServerError(TransportError):
    """The remote side failed internally (HTTP 5xx)."""

    kind = "server_error"
    retryable = True

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnexpectedStatusError(TransportError):
    kind = "unexpected_status"
    retryable = False

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class EncodingError(TransportError):
    """A batch or state could not be serialized for the wire."""

    kind = "encoding"
    retryable = False


class DecodingError(TransportError):
    """A wire payload could not be parsed into a domain object."""

    kind = "decoding"
    retryable = False


class FramingError(DecodingError):
    """A radio frame header was malformed or inconsistent."""

    kind = "framing"


class SinkWriteError(SyncError):
    """One step of writing a record into the health store failed."""


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a transport call: either a value or a ``TransportError``.

    Usage::

        result = await client.fetch(since)
        if not result.ok:
            logger.warning("fetch failed: %s", result.error)
        batch = result.value
    """

    value: T | None = None
    error: TransportError | None = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: TransportError) -> "Result[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, raising the stored error on failure."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
