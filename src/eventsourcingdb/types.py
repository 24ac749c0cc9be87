"""Value types exchanged with EventSourcingDB.

Wire names are camelCase (options, preconditions) or lower-case
CloudEvents names (events). Python attributes are snake_case; aliases map
between the two.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, InstanceOf, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from .errors import DecodeError
from .serialization import DataSerializer

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

T = TypeVar("T")


class _WireModel(BaseModel):
    """Immutable model with camelCase wire names."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Read and observe options
# =============================================================================


class Order(str, Enum):
    CHRONOLOGICAL = "chronological"
    ANTICHRONOLOGICAL = "antichronological"


class BoundType(str, Enum):
    INCLUSIVE = "inclusive"
    EXCLUSIVE = "exclusive"


class Bound(_WireModel):
    """Cursor position limiting a read or observe."""

    id: str
    type: BoundType


class ReadIfEventIsMissing(str, Enum):
    READ_EVERYTHING = "read-everything"
    READ_NOTHING = "read-nothing"


class ObserveIfEventIsMissing(str, Enum):
    READ_EVERYTHING = "read-everything"
    WAIT_FOR_EVENT = "wait-for-event"


class ReadFromLatestEvent(_WireModel):
    """Start reading at the latest event of a type on a subject."""

    subject: str
    type: str
    if_event_is_missing: ReadIfEventIsMissing


class ObserveFromLatestEvent(_WireModel):
    """Start observing at the latest event of a type on a subject."""

    subject: str
    type: str
    if_event_is_missing: ObserveIfEventIsMissing


class ReadEventsOptions(_WireModel):
    recursive: bool = False
    order: Order | None = None
    lower_bound: Bound | None = None
    upper_bound: Bound | None = None
    from_latest_event: ReadFromLatestEvent | None = None

    @model_validator(mode="after")
    def _check_cursor(self) -> ReadEventsOptions:
        if self.from_latest_event is not None and self.lower_bound is not None:
            raise ValueError("lower_bound and from_latest_event are mutually exclusive")
        return self


class ObserveEventsOptions(_WireModel):
    recursive: bool = False
    lower_bound: Bound | None = None
    from_latest_event: ObserveFromLatestEvent | None = None

    @model_validator(mode="after")
    def _check_cursor(self) -> ObserveEventsOptions:
        if self.from_latest_event is not None and self.lower_bound is not None:
            raise ValueError("lower_bound and from_latest_event are mutually exclusive")
        return self


# =============================================================================
# Preconditions
# =============================================================================


class PreconditionType(str, Enum):
    IS_SUBJECT_PRISTINE = "isSubjectPristine"
    IS_SUBJECT_POPULATED = "isSubjectPopulated"
    IS_SUBJECT_ON_EVENT_ID = "isSubjectOnEventId"
    IS_EVENTQL_QUERY_TRUE = "isEventQlQueryTrue"


class SubjectPayload(_WireModel):
    subject: str


class SubjectOnEventIdPayload(_WireModel):
    subject: str
    event_id: str


class QueryPayload(_WireModel):
    query: str


_PAYLOAD_TYPES: dict[PreconditionType, type[BaseModel]] = {
    PreconditionType.IS_SUBJECT_PRISTINE: SubjectPayload,
    PreconditionType.IS_SUBJECT_POPULATED: SubjectPayload,
    PreconditionType.IS_SUBJECT_ON_EVENT_ID: SubjectOnEventIdPayload,
    PreconditionType.IS_EVENTQL_QUERY_TRUE: QueryPayload,
}


class Precondition(_WireModel):
    """Server-side assertion that must hold for a write to succeed.

    Use the factory methods rather than building instances directly:

        Precondition.is_subject_pristine("/books/42")
        Precondition.is_subject_on_event_id("/books/42", "17")
    """

    type: PreconditionType
    payload: SubjectOnEventIdPayload | SubjectPayload | QueryPayload

    @model_validator(mode="after")
    def _check_payload(self) -> Precondition:
        expected = _PAYLOAD_TYPES[self.type]
        if type(self.payload) is not expected:
            raise ValueError(
                f"precondition '{self.type.value}' requires a {expected.__name__} payload"
            )
        return self

    @classmethod
    def is_subject_pristine(cls, subject: str) -> Precondition:
        return cls(
            type=PreconditionType.IS_SUBJECT_PRISTINE, payload=SubjectPayload(subject=subject)
        )

    @classmethod
    def is_subject_populated(cls, subject: str) -> Precondition:
        return cls(
            type=PreconditionType.IS_SUBJECT_POPULATED, payload=SubjectPayload(subject=subject)
        )

    @classmethod
    def is_subject_on_event_id(cls, subject: str, event_id: str) -> Precondition:
        return cls(
            type=PreconditionType.IS_SUBJECT_ON_EVENT_ID,
            payload=SubjectOnEventIdPayload(subject=subject, event_id=event_id),
        )

    @classmethod
    def is_eventql_query_true(cls, query: str) -> Precondition:
        return cls(type=PreconditionType.IS_EVENTQL_QUERY_TRUE, payload=QueryPayload(query=query))


# =============================================================================
# Events
# =============================================================================


class EventCandidate(BaseModel):
    """An event to be written. Id, time and hashes are assigned by the server."""

    model_config = ConfigDict(frozen=True)

    source: str
    subject: str
    type: str
    data: Any
    trace_parent: str | None = None
    trace_state: str | None = None


class EventType(BaseModel):
    """An event type known to the server, with its schema if one is registered."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    event_type: str = Field(alias="eventType")
    is_phantom: bool = Field(alias="isPhantom")
    json_schema: dict[str, Any] | None = Field(default=None, alias="schema")


class CloudEvent(BaseModel):
    """An event exactly as it appears on the wire."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    specversion: str
    id: str
    time: str
    source: str
    subject: str
    type: str
    datacontenttype: str
    data: Any
    hash: str
    predecessorhash: str
    traceparent: str | None = None
    tracestate: str | None = None
    signature: str | None = None


_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp, truncating sub-microsecond digits."""
    normalized = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)
    if normalized.endswith(("Z", "z")):
        normalized = normalized[:-1] + "+00:00"
    return datetime.fromisoformat(normalized)


class Event(BaseModel):
    """An event stored in EventSourcingDB.

    Build events with `Event.from_cloud_event`; it keeps the time string
    exactly as the server sent it, which is what the hash covers.
    """

    model_config = ConfigDict(frozen=True)

    spec_version: str
    id: str
    time: datetime
    time_from_server: str = Field(repr=False)
    source: str
    subject: str
    type: str
    data_content_type: str
    data: Any
    hash: str
    predecessor_hash: str
    trace_parent: str | None = None
    trace_state: str | None = None
    signature: str | None = None
    data_serializer: InstanceOf[DataSerializer] = Field(
        default_factory=DataSerializer, repr=False, exclude=True
    )

    @classmethod
    def from_cloud_event(
        cls,
        payload: Any,
        data_serializer: DataSerializer | None = None,
    ) -> Event:
        """Hydrate an event from its wire record.

        Raises:
            DecodeError: If the payload is not a complete event record.
        """
        try:
            record = CloudEvent.model_validate(payload)
            time = parse_timestamp(record.time)
        except (ValidationError, ValueError) as e:
            raise DecodeError(f"Failed to decode event: {e}") from e

        return cls(
            spec_version=record.specversion,
            id=record.id,
            time=time,
            time_from_server=record.time,
            source=record.source,
            subject=record.subject,
            type=record.type,
            data_content_type=record.datacontenttype,
            data=record.data,
            hash=record.hash,
            predecessor_hash=record.predecessorhash,
            trace_parent=record.traceparent,
            trace_state=record.tracestate,
            signature=record.signature,
            data_serializer=data_serializer or DataSerializer(),
        )

    def to_cloud_event(self) -> dict[str, Any]:
        """Return the wire record this event was built from."""
        record = CloudEvent(
            specversion=self.spec_version,
            id=self.id,
            time=self.time_from_server,
            source=self.source,
            subject=self.subject,
            type=self.type,
            datacontenttype=self.data_content_type,
            data=self.data,
            hash=self.hash,
            predecessorhash=self.predecessor_hash,
            traceparent=self.trace_parent,
            tracestate=self.trace_state,
            signature=self.signature,
        )
        return record.model_dump(exclude_none=True)

    def get_data(self, type_: type[T]) -> T:
        """Convert `data` into `type_` using the client's data serializer."""
        return self.data_serializer.deserialize(self.data, type_)

    def compute_hash(self) -> str:
        from .integrity import compute_hash

        return compute_hash(self)

    def verify_hash(self) -> None:
        """Raise HashMismatchError unless the stored hash matches the content."""
        from .integrity import verify_hash

        verify_hash(self)

    def verify_signature(self, verification_key: bytes | str | Ed25519PublicKey) -> None:
        """Verify hash and Ed25519 signature against the server's public key."""
        from .integrity import verify_signature

        verify_signature(self, verification_key)
