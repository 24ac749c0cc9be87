"""Exception types raised by the EventSourcingDB client.

Every public operation either returns a fully valid result or raises one
of these. Nothing is retried or recovered locally.
"""

from __future__ import annotations


class EventSourcingDbError(Exception):
    """Base class for all client errors."""


# =============================================================================
# Configuration
# =============================================================================


class ConfigurationError(EventSourcingDbError):
    """Raised when the client is misconfigured or points at the wrong server."""


class ServerIdentityError(ConfigurationError):
    """Raised when a response does not identify itself as EventSourcingDB."""

    def __init__(self, server_header: str | None):
        self.server_header = server_header
        if server_header is None:
            message = "Server must respond with a 'Server' header, got none."
        else:
            message = f"Server must identify as EventSourcingDB, got '{server_header}'."
        super().__init__(message)


# =============================================================================
# Transport
# =============================================================================


class TransportError(EventSourcingDbError):
    """Raised when the HTTP transport fails (connection refused, DNS, ...)."""


class TransportTimeoutError(TransportError):
    """Raised when the transport gives up waiting on the server."""


class HeartbeatTimeoutError(TransportTimeoutError):
    """Raised when a long-lived stream stays silent longer than allowed."""


class UnexpectedStatusError(EventSourcingDbError):
    """Raised for any non-success HTTP status.

    The response body is kept so callers can inspect the server's message.
    """

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Unexpected status code {status_code} ('{body}').")


# =============================================================================
# Protocol shape
# =============================================================================


class DecodeError(EventSourcingDbError):
    """Raised when a server response does not have the expected shape."""


class UnknownFrameError(DecodeError):
    """Raised for a stream line whose type is not part of the protocol."""

    def __init__(self, frame_type: str):
        self.frame_type = frame_type
        super().__init__(f"Failed to handle unknown line type '{frame_type}'.")


class UnexpectedFrameError(DecodeError):
    """Raised for a known line type that the current operation does not accept."""

    def __init__(self, frame_type: str, operation: str):
        self.frame_type = frame_type
        self.operation = operation
        super().__init__(f"Unexpected line type '{frame_type}' while running {operation}.")


class UnexpectedResponseTypeError(DecodeError):
    """Raised when a single-shot response carries the wrong type sentinel."""

    def __init__(self, actual: str | None, expected: str):
        self.actual = actual
        self.expected = expected
        if not actual:
            message = (
                f"Failed to get the expected response, got empty string, expected '{expected}'."
            )
        else:
            message = f"Failed to get the expected response, got '{actual}' expected '{expected}'."
        super().__init__(message)


class MissingResultError(DecodeError):
    """Raised when a successful response carries no result at all."""


# =============================================================================
# Server-reported
# =============================================================================


class ServerError(EventSourcingDbError):
    """Raised for an error line in a stream. The message is the server's text."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# =============================================================================
# Integrity
# =============================================================================


class IntegrityError(EventSourcingDbError):
    """Raised when hash or signature verification fails."""


class HashMismatchError(IntegrityError):
    """Raised when an event's recomputed hash differs from its stored hash."""

    def __init__(self, event_id: str, expected: str, actual: str):
        self.event_id = event_id
        self.expected = expected
        self.actual = actual
        super().__init__(f"Hash verification failed for event '{event_id}'.")


class ChainBrokenError(IntegrityError):
    """Raised when an event does not point at the hash of its predecessor."""

    def __init__(self, event_id: str, expected: str, actual: str):
        self.event_id = event_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Event '{event_id}' has predecessor hash '{actual}', expected '{expected}'."
        )


class SignatureVerificationError(IntegrityError):
    """Raised when an event signature does not verify."""


class MissingSignatureError(SignatureVerificationError):
    """Raised when verifying the signature of an unsigned event."""


class InvalidSignaturePrefixError(SignatureVerificationError):
    """Raised when a signature lacks the versioned signature prefix."""


# =============================================================================
# Cancellation
# =============================================================================


class OperationCancelledError(EventSourcingDbError):
    """Raised when the caller's cancel signal fires during an operation."""
