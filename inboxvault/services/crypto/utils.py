from __future__ import annotations

import base64
import binascii
import hmac

from inboxvault.core.errors import KeyMalformedError


KEY_LENGTH = 32


def decode_key_material(value: str) -> bytes:
    """Decode a base64 AES-256 key, rejecting anything that is not exactly 32 bytes."""
    stripped = value.strip()
    if not stripped:
        raise KeyMalformedError("key material is empty")
    try:
        decoded = base64.b64decode(stripped, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise KeyMalformedError("key material must be base64") from exc
    if len(decoded) != KEY_LENGTH:
        raise KeyMalformedError("key material must decode to 32 bytes")
    return decoded


def parse_key_list(raw: str | None) -> tuple[tuple[str, bytes], ...]:
    """Parse ``id:base64key`` entries separated by commas."""
    if not raw:
        return ()
    keys: list[tuple[str, bytes]] = []
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        key_id, sep, material = entry.rpartition(":")
        if not sep or not key_id.strip():
            raise KeyMalformedError("key entries must look like <key_id>:<base64 key>")
        keys.append((key_id.strip(), decode_key_material(material)))
    return tuple(keys)


def b64encode_bytes(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def b64decode_str(value: str) -> bytes:
    # Strict decoding; stray characters are a malformed envelope, not data to skip.
    return base64.b64decode(value.encode("ascii"), validate=True)


def constant_time_equal(a: str, b: str) -> bool:
    """Compare secrets without leaking where they differ.

    Unequal lengths return early, which leaks only the length.
    """
    left = a.encode("utf-8")
    right = b.encode("utf-8")
    if len(left) != len(right):
        return False
    return hmac.compare_digest(left, right)
