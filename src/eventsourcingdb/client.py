"""EventSourcingDB client.

Single-result operations (ping, write, schema registration) are plain
request/response calls. Multi-result operations (read, observe, query)
stream NDJSON lines and are exposed as async generators:

    async with create_client("http://localhost:3000", "secret") as client:
        await client.write_events([EventCandidate(...)])

        async for event in client.read_events("/books", ReadEventsOptions(recursive=True)):
            event.verify_hash()

Every operation takes an optional `cancel` event. Setting it abandons any
pending read and raises OperationCancelledError.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any, TypeVar, overload

import httpx
from pydantic import TypeAdapter, ValidationError

from . import encoding
from .config import ClientConfig
from .errors import (
    DecodeError,
    HeartbeatTimeoutError,
    MissingResultError,
    ServerError,
    ServerIdentityError,
    TransportError,
    TransportTimeoutError,
    UnexpectedFrameError,
    UnexpectedResponseTypeError,
    UnexpectedStatusError,
)
from .lines import LineDecoder, run_cancellable
from .protocol import (
    OBSERVE_EVENTS_FRAMES,
    READ_EVENT_TYPES_FRAMES,
    READ_EVENTS_FRAMES,
    READ_SUBJECTS_FRAMES,
    RUN_QUERY_FRAMES,
    Frame,
    FrameKind,
    parse_frame,
)
from .serialization import DataSerializer
from .types import (
    Event,
    EventCandidate,
    EventType,
    ObserveEventsOptions,
    Precondition,
    ReadEventsOptions,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

API_PREFIX = "/api/v1"
SERVER_HEADER_PREFIX = "EventSourcingDB/"

PING_RECEIVED = "io.eventsourcingdb.api.ping-received"
API_TOKEN_VERIFIED = "io.eventsourcingdb.api.api-token-verified"

_EVENTS_ADAPTER = TypeAdapter(list[dict[str, Any]])


def create_http_client(config: ClientConfig) -> httpx.AsyncClient:
    """Create the pooled HTTP client used by default."""
    return httpx.AsyncClient(
        base_url=config.base_url,
        headers={"Authorization": f"Bearer {config.api_token}"},
        timeout=httpx.Timeout(config.timeout),
        limits=httpx.Limits(keepalive_expiry=config.keepalive_expiry),
    )


@contextlib.contextmanager
def _transport_errors(heartbeat_timeout: bool = False) -> Iterator[None]:
    """Translate httpx transport failures into client errors."""
    try:
        yield
    except httpx.ReadTimeout as e:
        if heartbeat_timeout:
            raise HeartbeatTimeoutError(
                f"No data received within the heartbeat timeout: {e}"
            ) from e
        raise TransportTimeoutError(f"Request timed out: {e}") from e
    except httpx.TimeoutException as e:
        raise TransportTimeoutError(f"Request timed out: {e}") from e
    except httpx.RequestError as e:
        raise TransportError(f"Request failed: {e}") from e


@dataclass
class Client:
    """Async client for one EventSourcingDB server.

    The client holds no per-call state; concurrent calls share only the
    pooled HTTP client. Pass `http_client` to bring your own transport,
    headers or proxies; the client will then not close it.
    """

    config: ClientConfig
    data_serializer: DataSerializer = field(default_factory=DataSerializer)
    http_client: httpx.AsyncClient | None = field(default=None, repr=False)
    _owns_http_client: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.http_client is None:
            self.http_client = create_http_client(self.config)
            self._owns_http_client = True

    @property
    def _http(self) -> httpx.AsyncClient:
        if self.http_client is None:
            raise RuntimeError("Client is closed")
        return self.http_client

    async def close(self) -> None:
        """Close the pooled HTTP client if this client created it."""
        if self.http_client is not None and self._owns_http_client:
            await self.http_client.aclose()
            self.http_client = None

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # =========================================================================
    # Single-result operations
    # =========================================================================

    async def ping(
        self, *, cancel: asyncio.Event | None = None, timeout: float | None = None
    ) -> None:
        """Check that the server is reachable.

        Raises:
            UnexpectedResponseTypeError: If the server answers with anything
                but the ping sentinel.
        """
        body = await self._request_json("GET", "/ping", cancel=cancel, timeout=timeout)
        _expect_response_type(body, PING_RECEIVED)

    async def verify_api_token(
        self, *, cancel: asyncio.Event | None = None, timeout: float | None = None
    ) -> None:
        """Check that the configured API token is accepted."""
        body = await self._request_json(
            "POST", "/verify-api-token", cancel=cancel, timeout=timeout
        )
        _expect_response_type(body, API_TOKEN_VERIFIED)

    async def write_events(
        self,
        events: Iterable[EventCandidate],
        preconditions: Iterable[Precondition] | None = None,
        *,
        cancel: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> list[Event]:
        """Write events atomically. Either all events are written or none.

        Returns:
            The stored events, in the order of the candidates

        Raises:
            UnexpectedStatusError: If the server rejects the write, for
                example because a precondition failed (409).
        """
        body = encoding.encode_write_events(events, preconditions, self.data_serializer)
        response = await self._request_json(
            "POST", "/write-events", json=body, cancel=cancel, timeout=timeout
        )
        try:
            records = _EVENTS_ADAPTER.validate_python(response)
        except ValidationError as e:
            raise DecodeError(f"Failed to decode written events: {e}") from e

        written = [Event.from_cloud_event(record, self.data_serializer) for record in records]
        logger.debug(f"Wrote {len(written)} events")
        return written

    async def read_event_type(
        self,
        event_type: str,
        *,
        cancel: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> EventType:
        """Read one event type and its schema.

        Raises:
            UnexpectedStatusError: If the event type does not exist (404).
        """
        response = await self._request_json(
            "POST",
            "/read-event-type",
            json=encoding.encode_read_event_type(event_type),
            cancel=cancel,
            timeout=timeout,
        )
        if response is None:
            raise MissingResultError(f"Server returned no event type for '{event_type}'.")
        try:
            return EventType.model_validate(response)
        except ValidationError as e:
            raise DecodeError(f"Failed to decode event type: {e}") from e

    async def register_event_schema(
        self,
        event_type: str,
        schema: dict[str, Any],
        *,
        cancel: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> None:
        """Register a JSON schema that all future events of a type must match."""
        await self._request(
            "POST",
            "/register-event-schema",
            json=encoding.encode_register_event_schema(event_type, schema),
            cancel=cancel,
            timeout=timeout,
        )

    # =========================================================================
    # Streaming operations
    # =========================================================================

    async def read_events(
        self,
        subject: str,
        options: ReadEventsOptions | None = None,
        *,
        cancel: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[Event]:
        """Read the events of a subject. Ends after the last stored event."""
        frames = self._stream_frames(
            "/read-events",
            encoding.encode_read_events(subject, options),
            accepted=READ_EVENTS_FRAMES,
            operation="read-events",
            cancel=cancel,
            timeout=timeout,
        )
        async for frame in frames:
            yield Event.from_cloud_event(frame.payload, self.data_serializer)

    async def observe_events(
        self,
        subject: str,
        options: ObserveEventsOptions | None = None,
        *,
        cancel: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[Event]:
        """Read the events of a subject, then keep waiting for new ones.

        The stream does not end on its own; stop it with `cancel`, task
        cancellation or by leaving the `async for`. The server sends
        heartbeats while idle; they are never yielded.
        """
        frames = self._stream_frames(
            "/observe-events",
            encoding.encode_observe_events(subject, options),
            accepted=OBSERVE_EVENTS_FRAMES,
            operation="observe-events",
            cancel=cancel,
            timeout=timeout,
            long_lived=True,
        )
        async for frame in frames:
            yield Event.from_cloud_event(frame.payload, self.data_serializer)

    async def read_subjects(
        self,
        base_subject: str = "/",
        *,
        cancel: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[str]:
        """Read all subjects at or below `base_subject`."""
        frames = self._stream_frames(
            "/read-subjects",
            encoding.encode_read_subjects(base_subject),
            accepted=READ_SUBJECTS_FRAMES,
            operation="read-subjects",
            cancel=cancel,
            timeout=timeout,
        )
        async for frame in frames:
            subject = frame.payload.get("subject")
            if not isinstance(subject, str):
                raise DecodeError(f"Failed to decode subject from {frame.payload!r}.")
            yield subject

    async def read_event_types(
        self, *, cancel: asyncio.Event | None = None, timeout: float | None = None
    ) -> AsyncIterator[EventType]:
        """Read all event types known to the server."""
        frames = self._stream_frames(
            "/read-event-types",
            None,
            accepted=READ_EVENT_TYPES_FRAMES,
            operation="read-event-types",
            cancel=cancel,
            timeout=timeout,
        )
        async for frame in frames:
            try:
                yield EventType.model_validate(frame.payload)
            except ValidationError as e:
                raise DecodeError(f"Failed to decode event type: {e}") from e

    @overload
    def run_eventql_query(
        self,
        query: str,
        row_type: None = None,
        *,
        cancel: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[Any]: ...

    @overload
    def run_eventql_query(
        self,
        query: str,
        row_type: type[T],
        *,
        cancel: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[T]: ...

    async def run_eventql_query(
        self,
        query: str,
        row_type: type[Any] | None = None,
        *,
        cancel: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[Any]:
        """Run an EventQL query and yield its rows.

        Args:
            query: The EventQL query
            row_type: Type to convert each row into. None yields raw JSON
                values; Event hydrates rows as events.

        Raises:
            DecodeError: If a row does not fit `row_type`.
        """
        frames = self._stream_frames(
            "/run-eventql-query",
            encoding.encode_run_query(query),
            accepted=RUN_QUERY_FRAMES,
            operation="run-eventql-query",
            cancel=cancel,
            timeout=timeout,
        )
        async for frame in frames:
            if row_type is None:
                yield frame.payload
            elif row_type is Event:
                yield Event.from_cloud_event(frame.payload, self.data_serializer)
            else:
                yield self.data_serializer.deserialize(frame.payload, row_type)

    # =========================================================================
    # HTTP plumbing
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        cancel: asyncio.Event | None,
        timeout: float | None,
    ) -> httpx.Response:
        """Execute a request and validate status and server identity."""
        request = self._build_request(method, path, json, timeout)
        logger.debug(f"{method} {request.url}")
        with _transport_errors():
            response = await run_cancellable(self._http.send(request), cancel)
            await self._check_response(response)
        return response

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        cancel: asyncio.Event | None,
        timeout: float | None,
    ) -> Any:
        response = await self._request(method, path, json=json, cancel=cancel, timeout=timeout)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(f"Failed to decode response body: {e}") from e

    async def _stream_frames(
        self,
        path: str,
        body: Any,
        *,
        accepted: frozenset[FrameKind],
        operation: str,
        cancel: asyncio.Event | None,
        timeout: float | None,
        long_lived: bool = False,
    ) -> AsyncIterator[Frame]:
        """Yield the data frames of a streaming response.

        Heartbeats are consumed here. An error frame ends the stream with
        ServerError, any frame outside `accepted` with UnexpectedFrameError.
        """
        if long_lived:
            request_timeout = httpx.Timeout(
                timeout or self.config.timeout, read=self.config.heartbeat_timeout
            )
        else:
            request_timeout = timeout
        request = self._build_request("POST", path, body, request_timeout)
        logger.debug(f"POST {request.url} (streaming)")

        with _transport_errors():
            response = await run_cancellable(self._http.send(request, stream=True), cancel)
        try:
            with _transport_errors():
                await self._check_response(response)

            # Only silence after the headers arrived counts against the heartbeat timeout
            frame_count = 0
            with _transport_errors(heartbeat_timeout=long_lived):
                async for line in LineDecoder(response.aiter_bytes(), cancel=cancel):
                    frame = parse_frame(line)
                    if frame.kind not in accepted:
                        raise UnexpectedFrameError(frame.kind.value, operation)
                    if frame.kind is FrameKind.HEARTBEAT:
                        logger.debug(f"Heartbeat received on {operation}")
                        continue
                    if frame.kind is FrameKind.ERROR:
                        raise ServerError(frame.payload)

                    frame_count += 1
                    yield frame

            logger.debug(f"{operation} finished after {frame_count} frames")
        finally:
            await response.aclose()

    def _build_request(
        self, method: str, path: str, json: Any, timeout: float | httpx.Timeout | None
    ) -> httpx.Request:
        url = f"{API_PREFIX}{path}"
        if timeout is None:
            return self._http.build_request(method, url, json=json)
        return self._http.build_request(method, url, json=json, timeout=timeout)

    async def _check_response(self, response: httpx.Response) -> None:
        if response.status_code != httpx.codes.OK:
            await response.aread()
            body = response.text
            logger.warning(f"{response.request.url} returned {response.status_code}: {body}")
            raise UnexpectedStatusError(response.status_code, body)

        if self.config.verify_server_header:
            server = response.headers.get("server")
            if server is None or not server.startswith(SERVER_HEADER_PREFIX):
                logger.warning(f"{response.request.url} answered with server header {server!r}")
                raise ServerIdentityError(server)


def _expect_response_type(body: Any, expected: str) -> None:
    actual = body.get("type") if isinstance(body, dict) else None
    if actual != expected:
        raise UnexpectedResponseTypeError(actual if isinstance(actual, str) else None, expected)


def create_client(
    base_url: str,
    api_token: str,
    *,
    timeout: float = 30.0,
    data_serializer: DataSerializer | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Client:
    """Create a client for a remote EventSourcingDB server.

    Args:
        base_url: Server URL, e.g. http://localhost:3000
        api_token: API token sent as bearer token
        timeout: Request timeout in seconds
        data_serializer: Policy for converting event data
        http_client: Pre-configured HTTP client to use instead of a pooled one

    Returns:
        Client configured for HTTP
    """
    config = ClientConfig(base_url=base_url, api_token=api_token, timeout=timeout)
    return Client(
        config=config,
        data_serializer=data_serializer or DataSerializer(),
        http_client=http_client,
    )
