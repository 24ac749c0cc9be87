"""In-memory EventSourcingDB for integration tests.

Serves the HTTP API with Starlette and is mounted into the client through
httpx.ASGITransport, so requests never touch the network. Hashes and
signatures are computed the way the real server does it.
"""

from __future__ import annotations

import contextlib
import hashlib
import json
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from eventsourcingdb import Client, ClientConfig

BASE_URL = "http://esdb.test"
API_TOKEN = "secret"
SERVER_HEADERS = {"Server": "EventSourcingDB/1.0.0"}
ROOT_HASH = "0" * 64


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _is_below(subject: str, base: str) -> bool:
    if subject == base or base == "/":
        return True
    return subject.startswith(base.rstrip("/") + "/")


@dataclass
class FakeEventSourcingDb:
    """Minimal server state: an append-only event list and schemas."""

    api_token: str = API_TOKEN
    signing_key: Ed25519PrivateKey | None = None
    events: list[dict[str, Any]] = field(default_factory=list)
    schemas: dict[str, dict[str, Any]] = field(default_factory=dict)
    requests: list[tuple[str, Any]] = field(default_factory=list)

    @property
    def verification_key(self) -> bytes:
        assert self.signing_key is not None
        return self.signing_key.public_key().public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    # -------------------------------------------------------------------------
    # Event storage
    # -------------------------------------------------------------------------

    def _append(self, candidate: dict[str, Any]) -> dict[str, Any]:
        event_id = str(len(self.events))
        predecessor = self.events[-1]["hash"] if self.events else ROOT_HASH
        time = f"2026-10-17T09:30:{len(self.events):02d}.123456789Z"

        metadata = "|".join(
            [
                "1.0",
                event_id,
                predecessor,
                time,
                candidate["source"],
                candidate["subject"],
                candidate["type"],
                "application/json",
            ]
        )
        data_bytes = json.dumps(
            candidate["data"], separators=(",", ":"), ensure_ascii=False
        ).encode("utf-8")
        event_hash = _sha256((_sha256(metadata.encode("utf-8")) + _sha256(data_bytes)).encode())

        event: dict[str, Any] = {
            "specversion": "1.0",
            "id": event_id,
            "time": time,
            "source": candidate["source"],
            "subject": candidate["subject"],
            "type": candidate["type"],
            "datacontenttype": "application/json",
            "data": candidate["data"],
            "hash": event_hash,
            "predecessorhash": predecessor,
            "signature": None,
        }
        for key in ("traceparent", "tracestate"):
            if key in candidate:
                event[key] = candidate[key]
        if self.signing_key is not None:
            signature = self.signing_key.sign(event_hash.encode("utf-8"))
            event["signature"] = "esdb:signature:v1:" + signature.hex()

        self.events.append(event)
        return event

    def _precondition_holds(self, precondition: dict[str, Any]) -> bool:
        payload = precondition["payload"]
        on_subject = [e for e in self.events if e["subject"] == payload.get("subject")]
        if precondition["type"] == "isSubjectPristine":
            return not on_subject
        if precondition["type"] == "isSubjectPopulated":
            return bool(on_subject)
        if precondition["type"] == "isSubjectOnEventId":
            return bool(on_subject) and on_subject[-1]["id"] == payload["eventId"]
        if precondition["type"] == "isEventQlQueryTrue":
            return "== 0" not in payload["query"] or not self.events
        raise AssertionError(f"unknown precondition {precondition['type']}")

    def _select(self, subject: str, options: dict[str, Any]) -> list[dict[str, Any]]:
        if options.get("recursive"):
            selected = [e for e in self.events if _is_below(e["subject"], subject)]
        else:
            selected = [e for e in self.events if e["subject"] == subject]

        lower = options.get("lowerBound")
        if lower:
            bound = int(lower["id"])
            inclusive = lower["type"] == "inclusive"
            selected = [
                e for e in selected if int(e["id"]) > bound or (inclusive and int(e["id"]) == bound)
            ]
        upper = options.get("upperBound")
        if upper:
            bound = int(upper["id"])
            inclusive = upper["type"] == "inclusive"
            selected = [
                e for e in selected if int(e["id"]) < bound or (inclusive and int(e["id"]) == bound)
            ]

        if options.get("order") == "antichronological":
            selected = list(reversed(selected))
        return selected

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    def _authorized(self, request: Request) -> bool:
        return request.headers.get("authorization") == f"Bearer {self.api_token}"

    @staticmethod
    def _ndjson(lines: list[dict[str, Any]]) -> Response:
        body = "".join(json.dumps(line) + "\n" for line in lines)
        return Response(body, media_type="application/x-ndjson", headers=SERVER_HEADERS)

    @staticmethod
    def _json(content: Any, status_code: int = 200) -> JSONResponse:
        return JSONResponse(content, status_code=status_code, headers=SERVER_HEADERS)

    @staticmethod
    def _text(content: str, status_code: int) -> PlainTextResponse:
        return PlainTextResponse(content, status_code=status_code, headers=SERVER_HEADERS)

    async def _body(self, request: Request, path: str) -> Any:
        raw = await request.body()
        body = json.loads(raw) if raw else None
        self.requests.append((path, body))
        return body

    async def ping(self, request: Request) -> Response:
        return self._json({"type": "io.eventsourcingdb.api.ping-received"})

    async def verify_api_token(self, request: Request) -> Response:
        if not self._authorized(request):
            return self._text("Unauthorized", 401)
        return self._json({"type": "io.eventsourcingdb.api.api-token-verified"})

    async def write_events(self, request: Request) -> Response:
        if not self._authorized(request):
            return self._text("Unauthorized", 401)
        body = await self._body(request, "write-events")

        for candidate in body["events"]:
            if not candidate["subject"].startswith("/"):
                return self._text(f"subject '{candidate['subject']}' must be absolute", 400)
        for precondition in body.get("preconditions", []):
            if not self._precondition_holds(precondition):
                return self._text(f"precondition {precondition['type']} failed", 409)

        return self._json([self._append(candidate) for candidate in body["events"]])

    async def read_events(self, request: Request) -> Response:
        body = await self._body(request, "read-events")
        if not body["subject"].startswith("/"):
            return self._ndjson([{"type": "error", "payload": "subject must be absolute"}])
        events = self._select(body["subject"], body["options"])
        return self._ndjson([{"type": "event", "payload": e} for e in events])

    async def observe_events(self, request: Request) -> Response:
        body = await self._body(request, "observe-events")
        lines: list[dict[str, Any]] = [{"type": "heartbeat"}]
        for event in self._select(body["subject"], body["options"]):
            lines.append({"type": "event", "payload": event})
            lines.append({"type": "heartbeat"})
        return self._ndjson(lines)

    async def read_subjects(self, request: Request) -> Response:
        body = await self._body(request, "read-subjects")
        subjects: set[str] = set()
        for event in self.events:
            parts = event["subject"].strip("/").split("/")
            subjects.add("/")
            for i in range(1, len(parts) + 1):
                subjects.add("/" + "/".join(parts[:i]))
        base = body["baseSubject"]
        selected = sorted(s for s in subjects if _is_below(s, base))
        return self._ndjson([{"type": "subject", "payload": {"subject": s}} for s in selected])

    async def read_event_types(self, request: Request) -> Response:
        await self._body(request, "read-event-types")
        known = sorted({e["type"] for e in self.events} | set(self.schemas))
        lines: list[dict[str, Any]] = [{"type": "heartbeat"}]
        for event_type in known:
            payload = {
                "eventType": event_type,
                "isPhantom": event_type not in {e["type"] for e in self.events},
                "schema": self.schemas.get(event_type),
            }
            lines.append({"type": "eventType", "payload": payload})
        return self._ndjson(lines)

    async def read_event_type(self, request: Request) -> Response:
        body = await self._body(request, "read-event-type")
        event_type = body["eventType"]
        if event_type.endswith("."):
            return self._text("malformed event type", 400)
        is_known = any(e["type"] == event_type for e in self.events)
        if not is_known and event_type not in self.schemas:
            return self._text("event type not found", 404)
        return self._json(
            {
                "eventType": event_type,
                "isPhantom": not is_known,
                "schema": self.schemas.get(event_type),
            }
        )

    async def register_event_schema(self, request: Request) -> Response:
        body = await self._body(request, "register-event-schema")
        if body["eventType"] in self.schemas:
            return self._text("schema already registered", 409)
        self.schemas[body["eventType"]] = body["schema"]
        return self._json({"eventType": body["eventType"], "schema": body["schema"]})

    async def run_eventql_query(self, request: Request) -> Response:
        body = await self._body(request, "run-eventql-query")
        query = body["query"]
        lines: list[dict[str, Any]] = [{"type": "heartbeat"}]
        if "COUNT()" in query:
            lines.append({"type": "row", "payload": {"count": len(self.events)}})
        elif query.endswith("PROJECT INTO e"):
            lines.extend({"type": "row", "payload": e} for e in self.events)
        else:
            lines.append({"type": "error", "payload": "syntax error in query"})
        return self._ndjson(lines)

    @property
    def app(self) -> Starlette:
        prefix = "/api/v1"
        return Starlette(
            routes=[
                Route(f"{prefix}/ping", self.ping, methods=["GET"]),
                Route(f"{prefix}/verify-api-token", self.verify_api_token, methods=["POST"]),
                Route(f"{prefix}/write-events", self.write_events, methods=["POST"]),
                Route(f"{prefix}/read-events", self.read_events, methods=["POST"]),
                Route(f"{prefix}/observe-events", self.observe_events, methods=["POST"]),
                Route(f"{prefix}/read-subjects", self.read_subjects, methods=["POST"]),
                Route(f"{prefix}/read-event-types", self.read_event_types, methods=["POST"]),
                Route(f"{prefix}/read-event-type", self.read_event_type, methods=["POST"]),
                Route(
                    f"{prefix}/register-event-schema",
                    self.register_event_schema,
                    methods=["POST"],
                ),
                Route(f"{prefix}/run-eventql-query", self.run_eventql_query, methods=["POST"]),
            ]
        )


@pytest.fixture
def server() -> FakeEventSourcingDb:
    """Fresh, empty in-memory server."""
    return FakeEventSourcingDb()


@pytest.fixture
def signing_server() -> FakeEventSourcingDb:
    """In-memory server that signs every event with Ed25519."""
    return FakeEventSourcingDb(signing_key=Ed25519PrivateKey.generate())


def _connector(
    server: FakeEventSourcingDb,
) -> Callable[..., contextlib.AbstractAsyncContextManager[Client]]:
    @contextlib.asynccontextmanager
    async def connect(api_token: str = API_TOKEN, **kwargs: Any) -> AsyncIterator[Client]:
        http_client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=server.app),
            base_url=BASE_URL,
            headers={"Authorization": f"Bearer {api_token}"},
        )
        try:
            config = ClientConfig(base_url=BASE_URL, api_token=api_token)
            yield Client(config=config, http_client=http_client, **kwargs)
        finally:
            await http_client.aclose()

    return connect


@pytest.fixture
def connect(server: FakeEventSourcingDb):
    """Open a client against the in-memory server."""
    return _connector(server)


@pytest.fixture
def connect_signing(signing_server: FakeEventSourcingDb):
    """Open a client against the signing in-memory server."""
    return _connector(signing_server)
