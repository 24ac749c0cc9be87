"""Line protocol for streaming responses.

Each line of a streaming response is a JSON object with exactly two
fields, `type` and `payload`:

    {"type": "event", "payload": {"specversion": "1.0", "id": "0", ...}}
    {"type": "heartbeat"}
    {"type": "error", "payload": "subject must be an absolute path"}

The envelope is decoded first and the payload shape is checked against
the declared type before anything richer is built from it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import DecodeError, UnknownFrameError


class FrameKind(str, Enum):
    """All line types in the streaming protocol."""

    EVENT = "event"
    ERROR = "error"
    HEARTBEAT = "heartbeat"
    ROW = "row"
    SUBJECT = "subject"
    EVENT_TYPE = "eventType"


# Line types each streaming operation accepts
READ_EVENTS_FRAMES = frozenset({FrameKind.EVENT, FrameKind.ERROR})
OBSERVE_EVENTS_FRAMES = frozenset({FrameKind.EVENT, FrameKind.ERROR, FrameKind.HEARTBEAT})
READ_EVENT_TYPES_FRAMES = frozenset({FrameKind.EVENT_TYPE, FrameKind.ERROR, FrameKind.HEARTBEAT})
RUN_QUERY_FRAMES = frozenset({FrameKind.ROW, FrameKind.ERROR, FrameKind.HEARTBEAT})
READ_SUBJECTS_FRAMES = frozenset({FrameKind.SUBJECT, FrameKind.ERROR})

_OBJECT_PAYLOADS = frozenset({FrameKind.EVENT, FrameKind.EVENT_TYPE, FrameKind.SUBJECT})


class _Envelope(BaseModel):
    """Raw line as sent by the server."""

    model_config = ConfigDict(extra="forbid")

    type: str
    payload: Any = None


@dataclass(frozen=True)
class Frame:
    """One decoded protocol line."""

    kind: FrameKind
    payload: Any = None

    @property
    def is_terminal(self) -> bool:
        return self.kind is FrameKind.ERROR


def parse_frame(line: str) -> Frame:
    """Decode one line into a Frame.

    Raises:
        DecodeError: If the line is not a valid envelope or the payload
            has the wrong shape for its type.
        UnknownFrameError: If the type is not part of the protocol.
    """
    try:
        envelope = _Envelope.model_validate_json(line)
    except ValidationError as e:
        raise DecodeError(f"Failed to decode line '{line[:200]}': {e}") from e

    if not envelope.type:
        raise DecodeError(f"Failed to decode line '{line[:200]}': type must not be empty.")

    try:
        kind = FrameKind(envelope.type)
    except ValueError:
        raise UnknownFrameError(envelope.type) from None

    _check_payload_shape(kind, envelope.payload)
    return Frame(kind=kind, payload=envelope.payload)


def _check_payload_shape(kind: FrameKind, payload: Any) -> None:
    if kind in _OBJECT_PAYLOADS:
        if not isinstance(payload, dict):
            raise DecodeError(
                f"Wrong payload shape for type '{kind.value}': expected an object, "
                f"got {_json_type_name(payload)}."
            )
    elif kind is FrameKind.ERROR:
        if not isinstance(payload, str):
            raise DecodeError(
                "Wrong payload shape for type 'error': expected a string, "
                f"got {_json_type_name(payload)}."
            )
    elif kind is FrameKind.HEARTBEAT:
        if payload is not None:
            raise DecodeError(
                "Wrong payload shape for type 'heartbeat': expected none, "
                f"got {_json_type_name(payload)}."
            )
    # Rows are any JSON value


def _json_type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "a boolean"
    if isinstance(value, (int, float)):
        return "a number"
    if isinstance(value, str):
        return "a string"
    if isinstance(value, list):
        return "an array"
    return "an object"
