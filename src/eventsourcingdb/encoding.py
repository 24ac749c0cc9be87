"""Request bodies for the EventSourcingDB API.

Absent options are left out of the body entirely rather than sent as
null, and enum values go over the wire in their lower-case form.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel

from .serialization import DataSerializer
from .types import (
    EventCandidate,
    ObserveEventsOptions,
    Precondition,
    ReadEventsOptions,
)


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def encode_event_candidate(
    candidate: EventCandidate, data_serializer: DataSerializer
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "source": candidate.source,
        "subject": candidate.subject,
        "type": candidate.type,
        "data": data_serializer.serialize(candidate.data),
    }
    if candidate.trace_parent is not None:
        body["traceparent"] = candidate.trace_parent
    if candidate.trace_state is not None:
        body["tracestate"] = candidate.trace_state
    return body


def encode_precondition(precondition: Precondition) -> dict[str, Any]:
    return _dump(precondition)


def encode_write_events(
    events: Iterable[EventCandidate],
    preconditions: Iterable[Precondition] | None,
    data_serializer: DataSerializer,
) -> dict[str, Any]:
    return {
        "events": [encode_event_candidate(event, data_serializer) for event in events],
        "preconditions": [encode_precondition(p) for p in preconditions or ()],
    }


def encode_read_events(subject: str, options: ReadEventsOptions | None) -> dict[str, Any]:
    return {"subject": subject, "options": _dump(options or ReadEventsOptions())}


def encode_observe_events(subject: str, options: ObserveEventsOptions | None) -> dict[str, Any]:
    return {"subject": subject, "options": _dump(options or ObserveEventsOptions())}


def encode_read_subjects(base_subject: str) -> dict[str, Any]:
    return {"baseSubject": base_subject}


def encode_read_event_type(event_type: str) -> dict[str, Any]:
    return {"eventType": event_type}


def encode_register_event_schema(event_type: str, schema: dict[str, Any]) -> dict[str, Any]:
    return {"eventType": event_type, "schema": schema}


def encode_run_query(query: str) -> dict[str, Any]:
    return {"query": query}
