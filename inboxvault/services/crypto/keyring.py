from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from inboxvault.core.config import AppConfig
from inboxvault.core.errors import KeyMalformedError, KeyMissingError, KeyNotFoundError
from inboxvault.services.crypto.utils import KEY_LENGTH


@dataclass(frozen=True)
class TokenKey:
    key_id: str
    material: bytes = field(repr=False)


class KeyRing:
    """Key-id to AES-256 key registry with exactly one key designated for sealing.

    Retired keys stay registered so envelopes written before a rotation can
    still be opened; only the active key is ever used to seal.
    """

    def __init__(self, keys: Iterable[TokenKey], *, active_key_id: str) -> None:
        registry: dict[str, TokenKey] = {}
        for key in keys:
            if not key.key_id:
                raise KeyMissingError("token key id is empty")
            if len(key.material) != KEY_LENGTH:
                raise KeyMalformedError(f"token key {key.key_id!r} must be 32 bytes")
            if key.key_id in registry:
                raise KeyMalformedError(f"token key {key.key_id!r} is registered twice")
            registry[key.key_id] = key
        if not active_key_id or active_key_id not in registry:
            raise KeyMissingError("active token encryption key is not configured")
        self._keys = registry
        self._active_key_id = active_key_id

    @classmethod
    def from_config(cls, config: AppConfig) -> KeyRing:
        keys = [TokenKey(key_id=key_id, material=material) for key_id, material in config.security.token_keys]
        return cls(keys, active_key_id=config.security.token_key_id)

    @property
    def active(self) -> TokenKey:
        return self._keys[self._active_key_id]

    @property
    def key_ids(self) -> tuple[str, ...]:
        return tuple(self._keys)

    def get(self, key_id: str) -> TokenKey:
        key = self._keys.get(key_id)
        if key is None:
            raise KeyNotFoundError(f"no token key registered for id {key_id!r}")
        return key

    def __contains__(self, key_id: object) -> bool:
        return key_id in self._keys

    def __repr__(self) -> str:
        return f"KeyRing(active={self._active_key_id!r}, keys={list(self._keys)!r})"
