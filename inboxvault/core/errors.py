from __future__ import annotations

from collections.abc import Iterable


class InboxVaultError(Exception):
    """Base error for InboxVault."""


class ConfigurationError(InboxVaultError):
    """Invalid or missing configuration; carries every violation found."""

    def __init__(self, violations: Iterable[str]) -> None:
        self.violations: tuple[str, ...] = tuple(violations)
        lines = "\n".join(f"  - {violation}" for violation in self.violations)
        super().__init__(f"Configuration validation failed:\n{lines}")


class CryptoError(InboxVaultError):
    """Credential encryption or decryption failure."""


class KeyConfigError(CryptoError):
    """Token encryption key material is unusable; treated as a startup-class error."""


class KeyMissingError(KeyConfigError):
    """No key material configured for the requested key id."""


class KeyMalformedError(KeyConfigError):
    """Key material does not decode to a 32-byte AES key."""


class KeyNotFoundError(KeyConfigError):
    """Envelope names a key id that is not in the key ring."""


class EnvelopeDecodeError(CryptoError):
    """Stored envelope is not valid base64/JSON or is missing fields."""


class TagVerificationError(CryptoError):
    """Envelope failed authentication; never says which part was wrong."""


class EnvelopeSizeError(CryptoError):
    """Sealed envelope would exceed the storage cap."""


class IsolationViolation(InboxVaultError):
    """Access outside the active tenant scope; surfaces as not-found."""


class TenantPredicateError(InboxVaultError):
    """A storage call was issued without a tenant scope."""


class RetentionError(InboxVaultError):
    """Scheduled pruning failed; retried on the next run."""
