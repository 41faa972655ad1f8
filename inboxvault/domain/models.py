from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    Uuid,
    false,
    func,
    true,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# JSONB on PostgreSQL, plain JSON elsewhere so unit tests can run on SQLite.
JsonType = JSON().with_variant(JSONB(), "postgresql")

USER_ROLES = ("owner", "admin", "member", "viewer")
USER_STATUSES = ("active", "suspended", "invited")
TENANT_STATUSES = ("active", "paused", "archived")
PROVIDERS = ("google", "microsoft", "imap")
PROCESSING_STATUSES = ("queued", "processed", "failed", "skipped")
TASKLIST_PURPOSES = ("personal", "work", "ap", "ar", "sales", "support", "ops", "exec", "other")

# Shared by auth_accounts and mailboxes so the PostgreSQL type is declared once.
PROVIDER_ENUM = Enum(*PROVIDERS, name="provider")

# Tables carrying a tenant_id column and guarded by row-level security.
TENANT_SCOPED_TABLES = (
    "users",
    "auth_accounts",
    "mailboxes",
    "tasklists",
    "messages",
    "routing_rules",
    "onboarding_sessions",
    "activity_logs",
)


class Base(DeclarativeBase):
    pass


def _created_at() -> Mapped[datetime]:
    return mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


def _updated_at() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text)
    slug: Mapped[str] = mapped_column(Text, unique=True)
    status: Mapped[str] = mapped_column(
        Enum(*TENANT_STATUSES, name="tenant_status"), default="active", server_default="active"
    )
    plan: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("users_tenant_email_unique", "tenant_id", "email", unique=True),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    email: Mapped[str] = mapped_column(Text)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(Enum(*USER_ROLES, name="user_role"), default="member", server_default="member")
    status: Mapped[str] = mapped_column(
        Enum(*USER_STATUSES, name="user_status"), default="active", server_default="active"
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class AuthAccount(Base):
    __tablename__ = "auth_accounts"
    __table_args__ = (
        Index(
            "auth_accounts_tenant_provider_account_unique",
            "tenant_id",
            "provider",
            "provider_account_id",
            unique=True,
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True)
    provider: Mapped[str] = mapped_column(PROVIDER_ENUM)
    provider_account_id: Mapped[str] = mapped_column(Text)
    # Opaque sealed envelopes; plaintext tokens never reach this table.
    refresh_token_enc: Mapped[str | None] = mapped_column(Text, nullable=True)
    access_token_enc: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scopes: Mapped[str | None] = mapped_column(Text, nullable=True)
    key_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class Mailbox(Base):
    __tablename__ = "mailboxes"
    __table_args__ = (
        Index("mailboxes_tenant_email_unique", "tenant_id", "email_address", unique=True),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    provider: Mapped[str] = mapped_column(PROVIDER_ENUM)
    email_address: Mapped[str] = mapped_column(Text)
    refresh_token_enc: Mapped[str | None] = mapped_column(Text, nullable=True)
    key_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_history_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    watch_expiration: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    label_cache: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    is_service_account: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    status: Mapped[str] = mapped_column(Text, default="active", server_default="active")
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class Tasklist(Base):
    __tablename__ = "tasklists"
    __table_args__ = (
        Index("tasklists_tenant_purpose_unique", "tenant_id", "purpose", unique=True),
        Index("tasklists_tenant_list_unique", "tenant_id", "google_tasklist_id", unique=True),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    purpose: Mapped[str] = mapped_column(Enum(*TASKLIST_PURPOSES, name="tasklist_purpose"))
    google_tasklist_id: Mapped[str] = mapped_column(Text)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("messages_tenant_gmail_unique", "tenant_id", "gmail_message_id", unique=True),
        Index("messages_tenant_idem_unique", "tenant_id", "idempotency_key", unique=True),
        Index("messages_by_status_created", "tenant_id", "processing_status", "created_at"),
        Index("messages_by_mailbox_created", "tenant_id", "mailbox_id", "created_at"),
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="messages_confidence_range"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"))
    mailbox_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("mailboxes.id", ondelete="CASCADE"))
    gmail_message_id: Mapped[str] = mapped_column(Text)
    gmail_thread_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    label_applied: Mapped[str | None] = mapped_column(Text, nullable=True)
    confidence: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    created_task_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    sms_sid: Mapped[str | None] = mapped_column(Text, nullable=True)
    processing_status: Mapped[str] = mapped_column(
        Enum(*PROCESSING_STATUSES, name="processing_status"), default="queued", server_default="queued"
    )
    idempotency_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column("metadata", JsonType, nullable=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class RoutingRule(Base):
    __tablename__ = "routing_rules"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    mailbox_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("mailboxes.id", ondelete="SET NULL"), nullable=True
    )
    threshold: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    label_overrides: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    matchers: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    precedence: Mapped[int] = mapped_column(SmallInteger, default=0, server_default="0")
    active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class OnboardingSession(Base):
    __tablename__ = "onboarding_sessions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"))
    status: Mapped[str] = mapped_column(Text, default="in_progress", server_default="in_progress")
    step: Mapped[int] = mapped_column(SmallInteger, default=0, server_default="0")
    answers: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    inbox_descriptions: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    bio_sources: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    # Append-only audit trail; only the retention pruner deletes rows.
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    action: Mapped[str] = mapped_column(Text)
    entity_type: Mapped[str] = mapped_column(Text)
    entity_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    before_fields: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    after_fields: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )


class MaintenanceRun(Base):
    __tablename__ = "maintenance_runs"

    # Cross-tenant audit of privileged maintenance sessions; not tenant-scoped.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task: Mapped[str] = mapped_column(String)
    outcome: Mapped[str] = mapped_column(String)
    rows_affected: Mapped[int] = mapped_column(Integer, default=0)
    details_json: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
