from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
import json

from inboxvault.core.errors import EnvelopeDecodeError
from inboxvault.services.crypto.utils import b64decode_str, b64encode_bytes


# Hard cap on the stored (base64) envelope, in bytes.
MAX_ENVELOPE_BYTES = 16 * 1024
_FIELDS = ("keyId", "iv", "ciphertext", "tag")


@dataclass(frozen=True)
class EncryptedPayload:
    key_id: str
    iv: bytes
    ciphertext: bytes
    tag: bytes

    def to_json(self) -> str:
        # Field order and compact separators match envelopes already at rest.
        return json.dumps(
            {
                "keyId": self.key_id,
                "iv": b64encode_bytes(self.iv),
                "ciphertext": b64encode_bytes(self.ciphertext),
                "tag": b64encode_bytes(self.tag),
            },
            separators=(",", ":"),
        )

    def encode(self) -> str:
        return base64.b64encode(self.to_json().encode("utf-8")).decode("ascii")

    @classmethod
    def decode(cls, encoded: str) -> EncryptedPayload:
        if not isinstance(encoded, str) or not encoded:
            raise EnvelopeDecodeError("envelope is empty")
        if len(encoded) > MAX_ENVELOPE_BYTES:
            raise EnvelopeDecodeError("envelope exceeds the storage cap")
        try:
            raw = b64decode_str(encoded).decode("utf-8")
            data = json.loads(raw)
        except (binascii.Error, UnicodeError, ValueError) as exc:
            raise EnvelopeDecodeError("envelope is not base64-encoded JSON") from exc
        if not isinstance(data, dict):
            raise EnvelopeDecodeError("envelope must be a JSON object")
        for name in _FIELDS:
            if not isinstance(data.get(name), str):
                raise EnvelopeDecodeError(f"envelope field {name!r} is missing")
        try:
            return cls(
                key_id=data["keyId"],
                iv=b64decode_str(data["iv"]),
                ciphertext=b64decode_str(data["ciphertext"]),
                tag=b64decode_str(data["tag"]),
            )
        except (binascii.Error, UnicodeError, ValueError) as exc:
            raise EnvelopeDecodeError("envelope fields must be base64") from exc
