"""Event integrity verification.

Every event carries a SHA-256 hash over its metadata and data, and the
hash of the event before it. Servers configured with a signing key also
sign each hash with Ed25519.

Hash input:
    metadata = specversion|id|predecessorhash|time|source|subject|type|datacontenttype
    hash = sha256(hex(sha256(metadata)) + hex(sha256(json(data))))

`time` is the timestamp string exactly as the server sent it.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from .errors import (
    ChainBrokenError,
    ConfigurationError,
    HashMismatchError,
    InvalidSignaturePrefixError,
    MissingSignatureError,
    SignatureVerificationError,
)
from .serialization import canonical_json_bytes

if TYPE_CHECKING:
    from .types import Event

logger = logging.getLogger(__name__)

ROOT_HASH = "0" * 64
SIGNATURE_PREFIX = "esdb:signature:v1:"


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def metadata_string(event: Event) -> str:
    """Join the hashed metadata fields in their fixed order."""
    return "|".join(
        [
            event.spec_version,
            event.id,
            event.predecessor_hash,
            event.time_from_server,
            event.source,
            event.subject,
            event.type,
            event.data_content_type,
        ]
    )


def compute_hash(event: Event) -> str:
    """Recompute an event's hash from its content.

    Returns:
        Lower-case hex SHA-256 digest
    """
    metadata_hash = _sha256_hex(metadata_string(event).encode("utf-8"))
    data_hash = _sha256_hex(canonical_json_bytes(event.data))
    return _sha256_hex((metadata_hash + data_hash).encode("utf-8"))


def verify_hash(event: Event) -> None:
    """Check that an event's stored hash matches its content.

    Raises:
        HashMismatchError: If the recomputed hash differs.
    """
    actual = compute_hash(event)
    if actual != event.hash:
        logger.warning(f"Hash mismatch for event {event.id}: stored {event.hash}, got {actual}")
        raise HashMismatchError(event.id, expected=event.hash, actual=actual)


def verify_chain(events: Iterable[Event], predecessor_hash: str = ROOT_HASH) -> None:
    """Check a contiguous run of events in global order.

    Each event must verify on its own and point at the hash of the event
    before it. The first event is compared against `predecessor_hash`,
    which defaults to the root hash of an empty store.

    Raises:
        HashMismatchError: If an event's own hash does not verify.
        ChainBrokenError: If an event does not link to its predecessor.
    """
    expected = predecessor_hash
    for event in events:
        verify_hash(event)
        if event.predecessor_hash != expected:
            raise ChainBrokenError(event.id, expected=expected, actual=event.predecessor_hash)
        expected = event.hash


def load_verification_key(key: bytes | str | Ed25519PublicKey) -> Ed25519PublicKey:
    """Import an Ed25519 public key.

    Accepts DER SubjectPublicKeyInfo bytes (the format the server exports),
    PEM text, or a key object.

    Raises:
        ConfigurationError: If the key cannot be loaded or is not Ed25519.
    """
    if isinstance(key, Ed25519PublicKey):
        return key

    try:
        blob = key.encode("ascii") if isinstance(key, str) else key
        if blob.lstrip().startswith(b"-----BEGIN"):
            public_key = serialization.load_pem_public_key(blob)
        else:
            public_key = serialization.load_der_public_key(blob)
    except ValueError as e:
        raise ConfigurationError(f"Failed to load verification key: {e}") from e

    if not isinstance(public_key, Ed25519PublicKey):
        raise ConfigurationError("Verification key is not an Ed25519 public key.")
    return public_key


def verify_signature(event: Event, verification_key: bytes | str | Ed25519PublicKey) -> None:
    """Check an event's hash, then its Ed25519 signature over that hash.

    An unsigned event fails: callers only verify signatures when they
    expect them.

    Raises:
        HashMismatchError: If the hash does not verify.
        MissingSignatureError: If the event carries no signature.
        InvalidSignaturePrefixError: If the signature is not a v1 signature.
        SignatureVerificationError: If the signature does not match.
    """
    verify_hash(event)

    if event.signature is None:
        raise MissingSignatureError(f"Event '{event.id}' is not signed.")

    if not event.signature.startswith(SIGNATURE_PREFIX):
        raise InvalidSignaturePrefixError(
            f"Signature of event '{event.id}' must start with '{SIGNATURE_PREFIX}'."
        )

    try:
        signature = bytes.fromhex(event.signature[len(SIGNATURE_PREFIX) :])
    except ValueError as e:
        raise SignatureVerificationError(
            f"Signature of event '{event.id}' is not valid hex."
        ) from e

    public_key = load_verification_key(verification_key)
    try:
        public_key.verify(signature, event.hash.encode("utf-8"))
    except InvalidSignature as e:
        raise SignatureVerificationError(
            f"Signature verification failed for event '{event.id}'."
        ) from e
