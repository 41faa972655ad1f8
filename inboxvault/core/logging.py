from __future__ import annotations

import logging
import sys


_LEVELS: dict[str, int] = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}
_SENSITIVE_KEY_PATTERNS = ("token", "secret", "password", "authorization", "api_key", "key_material")
_REDACTED_VALUE = "[REDACTED]"
_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


class RedactingFilter(logging.Filter):
    # Scrub sensitive values passed as mapping args so plaintext secrets never reach handlers.
    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, dict):
            record.args = {
                key: (_REDACTED_VALUE if _is_sensitive_key(str(key)) else value)
                for key, value in record.args.items()
            }
        return True


def resolve_level(level: str) -> int:
    return _LEVELS.get(level.strip().lower(), logging.INFO)


def configure_logging(level: str = "info") -> None:
    root = logging.getLogger()
    root.setLevel(resolve_level(level))
    # Configure once; repeated app factories in tests must not stack handlers.
    if any(getattr(handler, "_inboxvault", False) for handler in root.handlers):
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT))
    handler.addFilter(RedactingFilter())
    handler._inboxvault = True  # type: ignore[attr-defined]
    root.addHandler(handler)
