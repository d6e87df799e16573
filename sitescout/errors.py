"""Error taxonomy for the live inspection pipeline."""

from __future__ import annotations


class InspectionError(Exception):
    """Base class for all pipeline errors."""


class EngineNotReady(InspectionError):
    """An operation needed a ready engine and the engine was not ready."""


class HandshakeTimeout(InspectionError):
    """No setup acknowledgment arrived within the handshake window."""


class HandshakeFailed(InspectionError):
    """The transport failed or closed before the setup acknowledgment."""


class TransportClosedUnexpectedly(InspectionError):
    """The streaming transport closed with a non-normal close code."""

    def __init__(self, code: int | None, reason: str = ""):
        self.code = code
        self.reason = reason
        super().__init__(f"connection closed unexpectedly (code={code}, reason={reason!r})")


class ReconnectExhausted(InspectionError):
    """Terminal: every reconnect attempt failed."""

    def __init__(self, attempts: int, last_error: Exception | None = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"gave up after {attempts} reconnect attempt(s): {last_error}")


class MalformedServerMessage(InspectionError):
    """A server message could not be decoded. Logged and ignored."""


class AnalysisCallFailed(InspectionError):
    """A single request/response analysis call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class HandoffFailed(InspectionError):
    """The deep-reasoning stage failed. Always converted to a fallback result."""
