"""Cross-field configuration invariants.

Each invariant is a named, independent check over the raw environment values.
All invariants run on every validation pass and every failure is reported, so
operators see the full list of problems from a single failed boot.

Checks read raw strings rather than the parsed settings model, so they run
even when unrelated fields fail type validation.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
import re
from typing import Any


E164_PATTERN = re.compile(r"^\+\d{7,15}$")
ENVIRONMENTS = ("development", "test", "production")
_TRUTHY = {"1", "true", "yes", "on"}


def parse_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    return str(value).strip().lower() in _TRUTHY


def environment_name(value: Any) -> str:
    # Anything that is not explicitly production or test runs with development defaults.
    normalized = str(value or "").strip().lower()
    if normalized in ("production", "test"):
        return normalized
    return "development"


def is_e164(value: str) -> bool:
    return E164_PATTERN.fullmatch(value) is not None


def previous_key_ids(raw: str | None) -> list[str]:
    if not raw:
        return []
    ids: list[str] = []
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        key_id, _sep, _material = entry.rpartition(":")
        ids.append(key_id.strip())
    return ids


@dataclass(frozen=True)
class RawEnvironment:
    values: Mapping[str, Any]

    def get(self, name: str) -> str | None:
        value = self.values.get(name)
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    def has(self, name: str) -> bool:
        return self.get(name) is not None

    @property
    def environment(self) -> str:
        return environment_name(self.values.get("app_env"))

    def feature(self, name: str) -> bool:
        return parse_bool(
            self.values.get(f"feature_enable_{name}"),
            default=self.environment == "development",
        )


InvariantCheck = Callable[[RawEnvironment], list[str]]


@dataclass(frozen=True)
class Invariant:
    name: str
    description: str
    check: InvariantCheck


def _classifier_requires_api_key(env: RawEnvironment) -> list[str]:
    if env.feature("classifier") and not env.has("openai_api_key"):
        return ["OPENAI_API_KEY is required when FEATURE_ENABLE_CLASSIFIER=true"]
    return []


def _sms_requires_credentials(env: RawEnvironment) -> list[str]:
    if not env.feature("sms"):
        return []
    missing = [name for name in ("twilio_account_sid", "twilio_auth_token") if not env.has(name)]
    return [f"{name.upper()} is required when FEATURE_ENABLE_SMS=true" for name in missing]


def _sms_single_sender(env: RawEnvironment) -> list[str]:
    if not env.feature("sms"):
        return []
    has_service = env.has("twilio_messaging_service_sid")
    has_from = env.has("twilio_from_number")
    if has_service and has_from:
        return ["provide only one of TWILIO_MESSAGING_SERVICE_SID or TWILIO_FROM_NUMBER, not both"]
    if not has_service and not has_from:
        return ["provide exactly one of TWILIO_MESSAGING_SERVICE_SID or TWILIO_FROM_NUMBER"]
    return []


def _sms_from_number_e164(env: RawEnvironment) -> list[str]:
    from_number = env.get("twilio_from_number")
    if env.feature("sms") and from_number is not None and not is_e164(from_number):
        return ["TWILIO_FROM_NUMBER must be an E.164 phone number"]
    return []


def _sms_default_recipient(env: RawEnvironment) -> list[str]:
    default_to = env.get("twilio_default_sms_to")
    if not env.feature("sms") or default_to is None:
        return []
    if env.environment == "production":
        if not parse_bool(env.values.get("allow_default_sms_to_in_prod"), default=False):
            return [
                "TWILIO_DEFAULT_SMS_TO is set in production without ALLOW_DEFAULT_SMS_TO_IN_PROD=true"
            ]
        return []
    if not is_e164(default_to):
        return ["TWILIO_DEFAULT_SMS_TO must be an E.164 phone number"]
    return []


def _push_requires_adc_in_development(env: RawEnvironment) -> list[str]:
    if (
        env.feature("push")
        and env.environment == "development"
        and not env.has("google_application_credentials")
    ):
        return ["GOOGLE_APPLICATION_CREDENTIALS is required in development when FEATURE_ENABLE_PUSH=true"]
    return []


def _previous_key_ids_unique(env: RawEnvironment) -> list[str]:
    ids = previous_key_ids(env.get("token_encryption_previous_keys"))
    if not ids:
        return []
    violations: list[str] = []
    active = env.get("token_encryption_key_id")
    if active is not None and active in ids:
        violations.append("TOKEN_ENCRYPTION_PREVIOUS_KEYS must not repeat TOKEN_ENCRYPTION_KEY_ID")
    if len(set(ids)) != len(ids):
        violations.append("TOKEN_ENCRYPTION_PREVIOUS_KEYS contains duplicate key ids")
    return violations


INVARIANTS: tuple[Invariant, ...] = (
    Invariant(
        "classifier_requires_api_key",
        "The classifier feature needs an OpenAI API key.",
        _classifier_requires_api_key,
    ),
    Invariant(
        "sms_requires_credentials",
        "The SMS feature needs a Twilio account SID and auth token.",
        _sms_requires_credentials,
    ),
    Invariant(
        "sms_single_sender",
        "The SMS feature needs exactly one sender: a messaging service or a from-number.",
        _sms_single_sender,
    ),
    Invariant(
        "sms_from_number_e164",
        "A Twilio from-number must be E.164.",
        _sms_from_number_e164,
    ),
    Invariant(
        "sms_default_recipient",
        "A fallback SMS recipient is opt-in in production and must be E.164 elsewhere.",
        _sms_default_recipient,
    ),
    Invariant(
        "push_requires_adc_in_development",
        "Push in development needs an explicit application-default credentials path.",
        _push_requires_adc_in_development,
    ),
    Invariant(
        "previous_key_ids_unique",
        "Retired token keys need distinct ids that differ from the active key id.",
        _previous_key_ids_unique,
    ),
)


def evaluate_invariants(
    values: Mapping[str, Any],
    invariants: tuple[Invariant, ...] = INVARIANTS,
) -> list[str]:
    env = RawEnvironment(values)
    violations: list[str] = []
    for invariant in invariants:
        violations.extend(f"{invariant.name}: {message}" for message in invariant.check(env))
    return violations
