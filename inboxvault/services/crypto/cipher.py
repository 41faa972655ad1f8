from __future__ import annotations

import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from inboxvault.core.config import AppConfig
from inboxvault.core.errors import EnvelopeSizeError, TagVerificationError
from inboxvault.services.crypto.envelope import MAX_ENVELOPE_BYTES, EncryptedPayload
from inboxvault.services.crypto.keyring import KeyRing


logger = logging.getLogger(__name__)

IV_LENGTH = 12
TAG_LENGTH = 16
_AUTH_FAILED = "credential envelope failed authentication"


class CredentialCipher:
    """AES-256-GCM sealing for provider tokens stored as opaque text columns."""

    def __init__(self, keyring: KeyRing) -> None:
        self._keyring = keyring

    @classmethod
    def from_config(cls, config: AppConfig) -> CredentialCipher:
        return cls(KeyRing.from_config(config))

    @property
    def active_key_id(self) -> str:
        return self._keyring.active.key_id

    def seal(self, plaintext: str) -> str:
        data = plaintext.encode("utf-8")
        # Base64 only grows the payload, so oversized input can be refused before encrypting.
        if len(data) > MAX_ENVELOPE_BYTES:
            raise EnvelopeSizeError("plaintext exceeds the credential envelope cap")
        key = self._keyring.active
        # A fresh CSPRNG nonce per call; nonce reuse under one key breaks GCM entirely.
        iv = os.urandom(IV_LENGTH)
        sealed = AESGCM(key.material).encrypt(iv, data, None)
        envelope = EncryptedPayload(
            key_id=key.key_id,
            iv=iv,
            ciphertext=sealed[:-TAG_LENGTH],
            tag=sealed[-TAG_LENGTH:],
        ).encode()
        if len(envelope) > MAX_ENVELOPE_BYTES:
            raise EnvelopeSizeError("sealed credential envelope exceeds 16 KiB")
        return envelope

    def open(self, encoded: str) -> str:
        payload = EncryptedPayload.decode(encoded)
        key = self._keyring.get(payload.key_id)
        if len(payload.iv) != IV_LENGTH or len(payload.tag) != TAG_LENGTH:
            raise TagVerificationError(_AUTH_FAILED)
        try:
            plaintext = AESGCM(key.material).decrypt(payload.iv, payload.ciphertext + payload.tag, None)
        except InvalidTag as exc:
            logger.warning("credential_envelope_rejected key_id=%s", payload.key_id)
            raise TagVerificationError(_AUTH_FAILED) from exc
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise TagVerificationError(_AUTH_FAILED) from exc

    def key_id_of(self, encoded: str) -> str:
        # Reads the envelope header only; nothing is decrypted.
        return EncryptedPayload.decode(encoded).key_id

    def needs_reseal(self, encoded: str) -> bool:
        return self.key_id_of(encoded) != self.active_key_id
