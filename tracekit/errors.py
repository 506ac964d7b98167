"""Error taxonomy for the TraceKit capture and upload pipeline.

Every failure is attributed to a single bucket or a single call.  None of
these exceptions is allowed to stop the ingestion lane or abort an entire
upload cycle; callers catch them at the lane/bucket boundary and log.
"""

from __future__ import annotations


class TraceError(Exception):
    """Base class for all TraceKit errors."""


class TransientTransportError(TraceError):
    """Network or HTTP failure talking to the sink.

    Retried implicitly on the next upload cycle; never fatal.

    Attributes:
        status_code: HTTP status if the server answered, else None.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedPayloadError(TraceError):
    """A bucket could not be serialized to the wire format."""


class NoPendingDataError(TraceError):
    """Nothing is queued for upload.  Informational, not a failure."""


class PermissionRevoked(TraceError):
    """The position source reported that location access was denied."""


class StorageError(TraceError):
    """A bucket repository read or write failed.

    The operation that raised it is aborted and leaves state as it was
    before the attempt, so the caller may simply retry.
    """
