"""EventSourcingDB client - talks to an EventSourcingDB server over HTTP.

Provides streaming reads, observes and EventQL queries, atomic writes with
preconditions, and client-side hash and signature verification of events.
"""

from .client import Client, create_client, create_http_client
from .config import ClientConfig
from .errors import (
    ChainBrokenError,
    ConfigurationError,
    DecodeError,
    EventSourcingDbError,
    HashMismatchError,
    HeartbeatTimeoutError,
    IntegrityError,
    InvalidSignaturePrefixError,
    MissingResultError,
    MissingSignatureError,
    OperationCancelledError,
    ServerError,
    ServerIdentityError,
    SignatureVerificationError,
    TransportError,
    TransportTimeoutError,
    UnexpectedFrameError,
    UnexpectedResponseTypeError,
    UnexpectedStatusError,
    UnknownFrameError,
)
from .integrity import (
    ROOT_HASH,
    compute_hash,
    load_verification_key,
    verify_chain,
    verify_hash,
    verify_signature,
)
from .lines import LineDecoder
from .protocol import Frame, FrameKind, parse_frame
from .serialization import DataSerializer
from .types import (
    Bound,
    BoundType,
    Event,
    EventCandidate,
    EventType,
    ObserveEventsOptions,
    ObserveFromLatestEvent,
    ObserveIfEventIsMissing,
    Order,
    Precondition,
    ReadEventsOptions,
    ReadFromLatestEvent,
    ReadIfEventIsMissing,
)

__all__ = [
    # Client
    "Client",
    "ClientConfig",
    "create_client",
    "create_http_client",
    "DataSerializer",
    # Types
    "Bound",
    "BoundType",
    "Event",
    "EventCandidate",
    "EventType",
    "ObserveEventsOptions",
    "ObserveFromLatestEvent",
    "ObserveIfEventIsMissing",
    "Order",
    "Precondition",
    "ReadEventsOptions",
    "ReadFromLatestEvent",
    "ReadIfEventIsMissing",
    # Protocol
    "Frame",
    "FrameKind",
    "LineDecoder",
    "parse_frame",
    # Integrity
    "ROOT_HASH",
    "compute_hash",
    "load_verification_key",
    "verify_chain",
    "verify_hash",
    "verify_signature",
    # Errors
    "EventSourcingDbError",
    "ConfigurationError",
    "ServerIdentityError",
    "TransportError",
    "TransportTimeoutError",
    "HeartbeatTimeoutError",
    "UnexpectedStatusError",
    "DecodeError",
    "UnknownFrameError",
    "UnexpectedFrameError",
    "UnexpectedResponseTypeError",
    "MissingResultError",
    "ServerError",
    "IntegrityError",
    "HashMismatchError",
    "ChainBrokenError",
    "SignatureVerificationError",
    "MissingSignatureError",
    "InvalidSignaturePrefixError",
    "OperationCancelledError",
]
