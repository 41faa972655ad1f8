"""baseline schema with tenant row-level security

Revision ID: 0001_baseline
Revises:
Create Date: 2026-09-28
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_baseline"
down_revision = None
branch_labels = None
depends_on = None

APP_ROLE = "inboxvault_app"
MAINTENANCE_ROLE = "inboxvault_maintenance"
# NULL when unset or cleared, so every tenant comparison fails closed.
CURRENT_TENANT = "NULLIF(current_setting('app.tenant_id', true), '')::uuid"

user_role = postgresql.ENUM("owner", "admin", "member", "viewer", name="user_role", create_type=False)
user_status = postgresql.ENUM("active", "suspended", "invited", name="user_status", create_type=False)
tenant_status = postgresql.ENUM("active", "paused", "archived", name="tenant_status", create_type=False)
provider = postgresql.ENUM("google", "microsoft", "imap", name="provider", create_type=False)
processing_status = postgresql.ENUM(
    "queued", "processed", "failed", "skipped", name="processing_status", create_type=False
)
tasklist_purpose = postgresql.ENUM(
    "personal", "work", "ap", "ar", "sales", "support", "ops", "exec", "other",
    name="tasklist_purpose",
    create_type=False,
)
_ENUMS = (user_role, user_status, tenant_status, provider, processing_status, tasklist_purpose)

# Tenant-scoped tables with full read/write tenant policies.
_READ_WRITE_TABLES = (
    "users",
    "auth_accounts",
    "mailboxes",
    "tasklists",
    "messages",
    "routing_rules",
    "onboarding_sessions",
)
_UPDATED_AT_TABLES = ("tenants",) + _READ_WRITE_TABLES


def _id_column() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False)


def _tenant_column() -> sa.Column:
    return sa.Column(
        "tenant_id",
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _create_tables() -> None:
    op.create_table(
        "tenants",
        _id_column(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False),
        sa.Column("status", tenant_status, nullable=False, server_default="active"),
        sa.Column("plan", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("tenants_slug_unique", "tenants", ["slug"], unique=True)

    op.create_table(
        "users",
        _id_column(),
        _tenant_column(),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("role", user_role, nullable=False, server_default="member"),
        sa.Column("status", user_status, nullable=False, server_default="active"),
        *_timestamps(),
    )
    op.create_index("users_tenant_email_unique", "users", ["tenant_id", "email"], unique=True)
    op.create_index("users_by_tenant", "users", ["tenant_id"])

    op.create_table(
        "auth_accounts",
        _id_column(),
        _tenant_column(),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provider", provider, nullable=False),
        sa.Column("provider_account_id", sa.Text(), nullable=False),
        sa.Column("refresh_token_enc", sa.Text(), nullable=True),
        sa.Column("access_token_enc", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scopes", sa.Text(), nullable=True),
        sa.Column("key_id", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "auth_accounts_tenant_provider_account_unique",
        "auth_accounts",
        ["tenant_id", "provider", "provider_account_id"],
        unique=True,
    )
    op.create_index("auth_accounts_by_tenant", "auth_accounts", ["tenant_id"])
    op.create_index("auth_accounts_by_user", "auth_accounts", ["user_id"])

    op.create_table(
        "mailboxes",
        _id_column(),
        _tenant_column(),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("provider", provider, nullable=False),
        sa.Column("email_address", sa.Text(), nullable=False),
        sa.Column("refresh_token_enc", sa.Text(), nullable=True),
        sa.Column("key_id", sa.Text(), nullable=True),
        sa.Column("last_history_id", sa.BigInteger(), nullable=True),
        sa.Column("watch_expiration", sa.DateTime(timezone=True), nullable=True),
        sa.Column("label_cache", postgresql.JSONB(), nullable=True),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_service_account", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.Text(), nullable=False, server_default="active"),
        *_timestamps(),
    )
    op.create_index("mailboxes_tenant_email_unique", "mailboxes", ["tenant_id", "email_address"], unique=True)
    op.create_index("mailboxes_by_tenant", "mailboxes", ["tenant_id"])
    op.create_index("mailboxes_by_user", "mailboxes", ["user_id"])

    op.create_table(
        "tasklists",
        _id_column(),
        _tenant_column(),
        sa.Column("purpose", tasklist_purpose, nullable=False),
        sa.Column("google_tasklist_id", sa.Text(), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("tasklists_tenant_purpose_unique", "tasklists", ["tenant_id", "purpose"], unique=True)
    op.create_index("tasklists_tenant_list_unique", "tasklists", ["tenant_id", "google_tasklist_id"], unique=True)
    op.create_index("tasklists_by_tenant", "tasklists", ["tenant_id"])

    op.create_table(
        "messages",
        _id_column(),
        _tenant_column(),
        sa.Column(
            "mailbox_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("mailboxes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("gmail_message_id", sa.Text(), nullable=False),
        sa.Column("gmail_thread_id", sa.Text(), nullable=True),
        sa.Column("label_applied", sa.Text(), nullable=True),
        sa.Column("confidence", sa.Numeric(3, 2), nullable=True),
        sa.Column("created_task_id", sa.Text(), nullable=True),
        sa.Column("sms_sid", sa.Text(), nullable=True),
        sa.Column("processing_status", processing_status, nullable=False, server_default="queued"),
        sa.Column("idempotency_key", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("confidence >= 0 AND confidence <= 1", name="messages_confidence_range"),
    )
    op.create_index("messages_tenant_gmail_unique", "messages", ["tenant_id", "gmail_message_id"], unique=True)
    op.create_index("messages_tenant_idem_unique", "messages", ["tenant_id", "idempotency_key"], unique=True)
    op.create_index(
        "messages_by_status_created",
        "messages",
        ["tenant_id", "processing_status", sa.text("created_at DESC")],
    )
    op.create_index(
        "messages_by_mailbox_created",
        "messages",
        ["tenant_id", "mailbox_id", sa.text("created_at DESC")],
    )

    op.create_table(
        "routing_rules",
        _id_column(),
        _tenant_column(),
        sa.Column(
            "mailbox_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("mailboxes.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("threshold", sa.Numeric(3, 2), nullable=True),
        sa.Column("label_overrides", postgresql.JSONB(), nullable=True),
        sa.Column("matchers", postgresql.JSONB(), nullable=True),
        sa.Column("precedence", sa.SmallInteger(), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("routing_rules_by_tenant", "routing_rules", ["tenant_id"])

    op.create_table(
        "onboarding_sessions",
        _id_column(),
        _tenant_column(),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.Text(), nullable=False, server_default="in_progress"),
        sa.Column("step", sa.SmallInteger(), nullable=False, server_default="0"),
        sa.Column("answers", postgresql.JSONB(), nullable=True),
        sa.Column("inbox_descriptions", postgresql.JSONB(), nullable=True),
        sa.Column("bio_sources", postgresql.JSONB(), nullable=True),
        *_timestamps(),
    )
    op.create_index("onboarding_sessions_by_tenant", "onboarding_sessions", ["tenant_id"])

    # No updated_at: activity rows are append-only.
    op.create_table(
        "activity_logs",
        _id_column(),
        _tenant_column(),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("entity_type", sa.Text(), nullable=False),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("before_fields", postgresql.JSONB(), nullable=True),
        sa.Column("after_fields", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("activity_logs_by_tenant", "activity_logs", ["tenant_id"])
    op.create_index("activity_logs_by_created_at", "activity_logs", ["created_at"])

    op.create_table(
        "maintenance_runs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("task", sa.String(), nullable=False),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("rows_affected", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("details_json", postgresql.JSONB(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("maintenance_runs_by_started_at", "maintenance_runs", [sa.text("started_at DESC")])


def _create_updated_at_triggers() -> None:
    op.execute(
        """
        CREATE OR REPLACE FUNCTION set_updated_at()
        RETURNS TRIGGER AS $$
        BEGIN
          NEW.updated_at = now();
          RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
        """
    )
    for table in _UPDATED_AT_TABLES:
        op.execute(
            f"CREATE TRIGGER {table}_set_updated_at BEFORE UPDATE ON {table} "
            "FOR EACH ROW EXECUTE FUNCTION set_updated_at()"
        )


def _create_roles() -> None:
    # NOLOGIN group roles; the migrating login is granted membership so it can SET ROLE into them.
    op.execute(
        f"""
        DO $$
        BEGIN
          IF NOT EXISTS (SELECT 1 FROM pg_roles WHERE rolname = '{APP_ROLE}') THEN
            CREATE ROLE {APP_ROLE} NOLOGIN;
          END IF;
          IF NOT EXISTS (SELECT 1 FROM pg_roles WHERE rolname = '{MAINTENANCE_ROLE}') THEN
            CREATE ROLE {MAINTENANCE_ROLE} NOLOGIN;
          END IF;
        END
        $$
        """
    )
    op.execute(f"GRANT {APP_ROLE} TO CURRENT_USER")
    op.execute(f"GRANT {MAINTENANCE_ROLE} TO CURRENT_USER")

    tables = ", ".join(("tenants",) + _READ_WRITE_TABLES)
    op.execute(f"GRANT SELECT, INSERT, UPDATE, DELETE ON {tables} TO {APP_ROLE}")
    op.execute(f"GRANT SELECT, INSERT ON activity_logs TO {APP_ROLE}")
    op.execute(f"GRANT SELECT, DELETE ON activity_logs TO {MAINTENANCE_ROLE}")
    op.execute(f"GRANT SELECT (id, created_at) ON tenants TO {MAINTENANCE_ROLE}")
    op.execute(f"GRANT SELECT, INSERT ON maintenance_runs TO {MAINTENANCE_ROLE}")
    op.execute(f"GRANT USAGE ON SEQUENCE maintenance_runs_id_seq TO {MAINTENANCE_ROLE}")


def _enable_row_level_security() -> None:
    # FORCE applies policies to the table owner too; with no matching policy access is denied.
    for table in ("tenants",) + _READ_WRITE_TABLES + ("activity_logs",):
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY")

    op.execute(
        f"CREATE POLICY tenant_access_tenants ON tenants "
        f"USING (id = {CURRENT_TENANT}) WITH CHECK (id = {CURRENT_TENANT})"
    )
    for table in _READ_WRITE_TABLES:
        op.execute(
            f"CREATE POLICY tenant_access_{table} ON {table} "
            f"USING (tenant_id = {CURRENT_TENANT}) WITH CHECK (tenant_id = {CURRENT_TENANT})"
        )

    # Maintenance enumerates tenant ids for key rotation; column grants keep the rest unreadable.
    op.execute(
        f"CREATE POLICY maintenance_list_tenants ON tenants FOR SELECT "
        f"TO {MAINTENANCE_ROLE} USING (true)"
    )

    # Tenants may read and append their own activity; only maintenance may delete, across tenants.
    op.execute(
        f"CREATE POLICY tenant_read_activity_logs ON activity_logs FOR SELECT "
        f"USING (tenant_id = {CURRENT_TENANT})"
    )
    op.execute(
        f"CREATE POLICY tenant_append_activity_logs ON activity_logs FOR INSERT "
        f"WITH CHECK (tenant_id = {CURRENT_TENANT})"
    )
    op.execute(
        f"CREATE POLICY maintenance_read_activity_logs ON activity_logs FOR SELECT "
        f"TO {MAINTENANCE_ROLE} USING (true)"
    )
    op.execute(
        f"CREATE POLICY maintenance_prune_activity_logs ON activity_logs FOR DELETE "
        f"TO {MAINTENANCE_ROLE} USING (true)"
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum in _ENUMS:
        enum.create(bind, checkfirst=True)
    _create_tables()
    _create_updated_at_triggers()
    _create_roles()
    _enable_row_level_security()


def downgrade() -> None:
    for table in (
        "maintenance_runs",
        "activity_logs",
        "onboarding_sessions",
        "routing_rules",
        "messages",
        "tasklists",
        "mailboxes",
        "auth_accounts",
        "users",
        "tenants",
    ):
        op.drop_table(table)
    op.execute("DROP FUNCTION IF EXISTS set_updated_at()")
    bind = op.get_bind()
    for enum in reversed(_ENUMS):
        enum.drop(bind, checkfirst=True)
    # Roles are cluster-wide and may be shared with other databases; they are left in place.
