"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Callable
from typing import Any

import pytest

ROOT_HASH = "0" * 64


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_record(record: dict[str, Any]) -> str:
    """Hash a wire record the way the server does, independent of the client."""
    metadata = "|".join(
        [
            record["specversion"],
            record["id"],
            record["predecessorhash"],
            record["time"],
            record["source"],
            record["subject"],
            record["type"],
            record["datacontenttype"],
        ]
    )
    data = json.dumps(record["data"], separators=(",", ":"), ensure_ascii=False)
    return _sha256((_sha256(metadata.encode()) + _sha256(data.encode())).encode())


@pytest.fixture
def make_record() -> Callable[..., dict[str, Any]]:
    """Build a correctly hashed wire record; keyword arguments override fields."""

    def _make(**overrides: Any) -> dict[str, Any]:
        record: dict[str, Any] = {
            "specversion": "1.0",
            "id": "0",
            "time": "2026-10-17T09:30:00.123456789Z",
            "source": "https://library.example",
            "subject": "/books/42",
            "type": "io.example.book-acquired",
            "datacontenttype": "application/json",
            "data": {"title": "2001: A Space Odyssey", "author": "Arthur C. Clarke"},
            "predecessorhash": ROOT_HASH,
        }
        record.update(overrides)
        record.setdefault("hash", hash_record(record))
        return record

    return _make
