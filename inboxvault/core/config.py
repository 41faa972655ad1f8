from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal

from pydantic import (
    AfterValidator,
    AnyHttpUrl,
    EmailStr,
    Field,
    StringConstraints,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, DotEnvSettingsSource, EnvSettingsSource, SettingsConfigDict

from inboxvault.core.errors import ConfigurationError, KeyMalformedError
from inboxvault.core.invariants import environment_name, evaluate_invariants, parse_bool
from inboxvault.services.crypto.utils import decode_key_material, parse_key_list


PUBSUB_OIDC_ISSUER = "https://accounts.google.com"
DEFAULT_CORS_ORIGIN = "http://localhost:5173"
# Development reads these in order; later files win.
DEV_ENV_FILES = (".env", ".env.local")

_URL_ADAPTER = TypeAdapter(AnyHttpUrl)


def _validate_url(value: str) -> str:
    try:
        _URL_ADAPTER.validate_python(value)
    except ValidationError as exc:
        raise ValueError("must be a well-formed http(s) URL") from exc
    return value


HttpUrlStr = Annotated[str, AfterValidator(_validate_url)]
NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class Settings(BaseSettings):
    """Raw, typed view of the environment surface; one field per variable."""

    model_config = SettingsConfigDict(extra="ignore", case_sensitive=False, frozen=True)

    app_env: Literal["development", "test", "production"] = "development"

    port: int = Field(default=4000, ge=1, le=65535)
    app_base_url: HttpUrlStr = "http://localhost:4000"
    log_level: Literal["trace", "debug", "info", "warn", "error"] = "info"
    cors_origin: str = DEFAULT_CORS_ORIGIN

    database_url: NonEmptyStr
    # Roles assumed per transaction (created by the baseline migration); empty disables.
    database_tenant_role: str | None = "inboxvault_app"
    database_maintenance_role: str | None = "inboxvault_maintenance"
    # Separate login for privileged maintenance; falls back to DATABASE_URL.
    maintenance_database_url: str | None = None
    db_pool_size: int = Field(default=10, ge=1)
    db_max_overflow: int = Field(default=10, ge=0)
    retention_days: int = Field(default=180, ge=1)
    retention_interval_s: int = Field(default=3600, ge=60)

    token_encryption_key: NonEmptyStr
    token_encryption_key_id: NonEmptyStr
    # Retired keys kept for decryption only, as "<key_id>:<base64 key>,...".
    token_encryption_previous_keys: str | None = None

    google_project_id: NonEmptyStr
    google_oauth_client_id: NonEmptyStr
    google_oauth_client_secret: NonEmptyStr
    google_oauth_redirect_uri: HttpUrlStr
    google_application_credentials: str | None = None
    gmail_scopes: str = "https://www.googleapis.com/auth/gmail.modify"
    tasks_scopes: str = "https://www.googleapis.com/auth/tasks"

    push_endpoint_path: str = "/api/pubsub/push"
    pubsub_topic: NonEmptyStr
    pubsub_subscription: NonEmptyStr
    pubsub_oidc_audience: str | None = None
    pubsub_service_account_email: EmailStr
    pubsub_project_number: str | None = None
    pubsub_verification_token: str | None = None

    openai_api_key: str | None = None
    openai_model: str = "gpt-4o"
    openai_api_base: str | None = None

    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_messaging_service_sid: str | None = None
    twilio_from_number: str | None = None
    twilio_default_sms_to: str | None = None
    allow_default_sms_to_in_prod: str | None = None
    twilio_webhook_secret: str | None = None

    # Flags stay raw so their default can depend on APP_ENV.
    feature_enable_sms: str | None = None
    feature_enable_tasks: str | None = None
    feature_enable_push: str | None = None
    feature_enable_classifier: str | None = None

    @field_validator("app_env", "log_level", mode="before")
    @classmethod
    def _normalize_choice(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("token_encryption_key")
    @classmethod
    def _check_token_key(cls, value: str) -> str:
        try:
            decode_key_material(value)
        except KeyMalformedError as exc:
            raise ValueError("must be base64-encoded 32-byte key") from exc
        return value

    @field_validator("token_encryption_previous_keys")
    @classmethod
    def _check_previous_keys(cls, value: str | None) -> str | None:
        try:
            parse_key_list(value)
        except KeyMalformedError as exc:
            raise ValueError(f"invalid previous key entry: {exc}") from exc
        return value


@dataclass(frozen=True)
class AppSettings:
    port: int
    base_url: str
    cors_origins: tuple[str, ...]
    log_level: str


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = field(repr=False)
    retention_days: int
    retention_interval_s: int
    tenant_role: str | None
    maintenance_role: str | None
    maintenance_url: str | None = field(repr=False)
    pool_size: int
    max_overflow: int


@dataclass(frozen=True)
class SecuritySettings:
    token_key_id: str
    token_keys: tuple[tuple[str, bytes], ...] = field(repr=False)


@dataclass(frozen=True)
class GoogleOAuthSettings:
    client_id: str
    client_secret: str = field(repr=False)
    redirect_uri: str


@dataclass(frozen=True)
class GoogleSettings:
    project_id: str
    oauth: GoogleOAuthSettings
    adc_path: str | None
    gmail_scopes: tuple[str, ...]
    tasks_scopes: tuple[str, ...]


@dataclass(frozen=True)
class PubSubOidcSettings:
    issuer: str
    audience: str
    service_account_email: str
    project_number: str | None
    verification_token: str | None = field(repr=False)


@dataclass(frozen=True)
class PubSubSettings:
    topic: str
    subscription: str
    push_path: str
    audience: str
    oidc: PubSubOidcSettings


@dataclass(frozen=True)
class OpenAISettings:
    api_key: str | None = field(repr=False)
    model: str
    api_base: str | None


@dataclass(frozen=True)
class TwilioSettings:
    account_sid: str | None
    auth_token: str | None = field(repr=False)
    messaging_service_sid: str | None
    from_number: str | None
    default_sms_to: str | None
    webhook_secret: str | None = field(repr=False)


@dataclass(frozen=True)
class FeatureFlags:
    sms: bool
    tasks: bool
    push: bool
    classifier: bool


@dataclass(frozen=True)
class AppConfig:
    """Validated process configuration, built once at startup and passed explicitly."""

    env: str
    app: AppSettings
    db: DatabaseSettings
    security: SecuritySettings
    google: GoogleSettings
    pubsub: PubSubSettings
    openai: OpenAISettings
    twilio: TwilioSettings
    features: FeatureFlags

    @property
    def is_development(self) -> bool:
        return self.env == "development"

    @property
    def is_test(self) -> bool:
        return self.env == "test"

    @property
    def is_production(self) -> bool:
        return self.env == "production"


def split_csv(value: str | None, fallback: tuple[str, ...] = ()) -> tuple[str, ...]:
    if value is None or not value.strip():
        return fallback
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _optional(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def normalize_environ(environ: Mapping[str, str]) -> dict[str, Any]:
    # Match variable names case-insensitively and drop anything the settings model does not know.
    known = Settings.model_fields
    return {key.lower(): value for key, value in environ.items() if key.lower() in known}


def read_environment() -> dict[str, Any]:
    """Collect raw values from the process environment, plus dotenv files in development."""
    values: dict[str, Any] = EnvSettingsSource(Settings, case_sensitive=False)()
    if environment_name(values.get("app_env")) == "development":
        file_values = DotEnvSettingsSource(Settings, env_file=DEV_ENV_FILES)()
        # Real environment variables always take precedence over dotenv files.
        values = {**file_values, **values}
    return values


def _format_validation_errors(exc: ValidationError) -> list[str]:
    messages: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "settings"
        messages.append(f"{location.upper()}: {error['msg']}")
    return messages


def build_config(settings: Settings) -> AppConfig:
    env = settings.app_env
    development = env == "development"

    def feature(raw: str | None) -> bool:
        return parse_bool(raw, default=development)

    audience = _optional(settings.pubsub_oidc_audience) or (
        f"{settings.app_base_url}{settings.push_endpoint_path}"
    )
    token_keys = ((settings.token_encryption_key_id, decode_key_material(settings.token_encryption_key)),)
    token_keys += parse_key_list(settings.token_encryption_previous_keys)

    return AppConfig(
        env=env,
        app=AppSettings(
            port=settings.port,
            base_url=settings.app_base_url,
            cors_origins=split_csv(settings.cors_origin, (DEFAULT_CORS_ORIGIN,)),
            log_level=settings.log_level,
        ),
        db=DatabaseSettings(
            url=settings.database_url,
            retention_days=settings.retention_days,
            retention_interval_s=settings.retention_interval_s,
            tenant_role=_optional(settings.database_tenant_role),
            maintenance_role=_optional(settings.database_maintenance_role),
            maintenance_url=_optional(settings.maintenance_database_url),
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        ),
        security=SecuritySettings(
            token_key_id=settings.token_encryption_key_id,
            token_keys=token_keys,
        ),
        google=GoogleSettings(
            project_id=settings.google_project_id,
            oauth=GoogleOAuthSettings(
                client_id=settings.google_oauth_client_id,
                client_secret=settings.google_oauth_client_secret,
                redirect_uri=settings.google_oauth_redirect_uri,
            ),
            adc_path=_optional(settings.google_application_credentials),
            gmail_scopes=split_csv(settings.gmail_scopes),
            tasks_scopes=split_csv(settings.tasks_scopes),
        ),
        pubsub=PubSubSettings(
            topic=settings.pubsub_topic,
            subscription=settings.pubsub_subscription,
            push_path=settings.push_endpoint_path,
            audience=audience,
            oidc=PubSubOidcSettings(
                issuer=PUBSUB_OIDC_ISSUER,
                audience=audience,
                service_account_email=str(settings.pubsub_service_account_email),
                project_number=_optional(settings.pubsub_project_number),
                # Shared-token verification is a development convenience only.
                verification_token=_optional(settings.pubsub_verification_token) if development else None,
            ),
        ),
        openai=OpenAISettings(
            api_key=_optional(settings.openai_api_key),
            model=settings.openai_model,
            api_base=_optional(settings.openai_api_base),
        ),
        twilio=TwilioSettings(
            account_sid=_optional(settings.twilio_account_sid),
            auth_token=_optional(settings.twilio_auth_token),
            messaging_service_sid=_optional(settings.twilio_messaging_service_sid),
            from_number=_optional(settings.twilio_from_number),
            default_sms_to=_optional(settings.twilio_default_sms_to),
            webhook_secret=_optional(settings.twilio_webhook_secret),
        ),
        features=FeatureFlags(
            sms=feature(settings.feature_enable_sms),
            tasks=feature(settings.feature_enable_tasks),
            push=feature(settings.feature_enable_push),
            classifier=feature(settings.feature_enable_classifier),
        ),
    )


def load_config(environ: Mapping[str, str] | None = None) -> AppConfig:
    """Validate the environment into an AppConfig or raise ConfigurationError.

    Field checks and cross-field invariants run independently; every violation
    from both passes is reported in one error. Passing ``environ`` validates
    exactly that mapping and never touches the process environment.
    """
    values = read_environment() if environ is None else normalize_environ(environ)
    violations: list[str] = []
    settings: Settings | None = None
    try:
        settings = Settings.model_validate(values)
    except ValidationError as exc:
        violations.extend(_format_validation_errors(exc))
    violations.extend(evaluate_invariants(values))
    if violations or settings is None:
        raise ConfigurationError(violations)
    return build_config(settings)
