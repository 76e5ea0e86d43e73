"""initial auth core schema

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:00:01
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


_IMMUTABLE_COLUMNS = (
    "id", "timestamp", "account_email", "account_role", "action",
    "resource_type", "resource_id", "ip_address", "user_agent",
    "request_method", "request_path", "status", "error_code",
    "error_message", "metadata", "account_ref", "previous_hash", "content_hash",
)

_CHANGED = " OR\n        ".join(
    f'CAST(OLD."{col}" AS text) IS DISTINCT FROM CAST(NEW."{col}" AS text)'
    for col in _IMMUTABLE_COLUMNS
)

PREVENT_UPDATE_FUNCTION = f"""
CREATE OR REPLACE FUNCTION prevent_audit_log_update()
RETURNS TRIGGER AS $$
BEGIN
    IF (
        {_CHANGED} OR
        (OLD.account_id IS DISTINCT FROM NEW.account_id AND NEW.account_id IS NOT NULL)
    ) THEN
        RAISE EXCEPTION 'Audit log entries are immutable and cannot be modified';
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql
"""

PREVENT_DELETE_FUNCTION = """
CREATE OR REPLACE FUNCTION prevent_audit_log_delete()
RETURNS TRIGGER AS $$
BEGIN
    RAISE EXCEPTION 'Audit log entries are immutable and cannot be deleted';
END;
$$ LANGUAGE plpgsql
"""


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False, server_default="staff"),
        sa.Column("first_name", sa.String(length=100), nullable=True),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("failed_login_attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.CheckConstraint("failed_login_attempts >= 0", name="chk_failed_login_attempts"),
    )
    op.create_index("ix_accounts_id", "accounts", ["id"])
    op.create_index("idx_accounts_email", "accounts", ["email"])
    op.create_index("idx_accounts_role", "accounts", ["role"])

    op.create_table(
        "auth_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("session_key", sa.String(length=64), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_id"),
    )
    op.create_index("ix_auth_sessions_id", "auth_sessions", ["id"])
    op.create_index("ix_auth_sessions_session_key", "auth_sessions", ["session_key"], unique=True)

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=True),
        sa.Column("account_email", sa.String(length=255), nullable=True),
        sa.Column("account_role", sa.String(length=50), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("resource_type", sa.String(length=100), nullable=True),
        sa.Column("resource_id", sa.String(length=128), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("request_method", sa.String(length=10), nullable=True),
        sa.Column("request_path", sa.String(length=500), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("error_code", sa.String(length=50), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("account_ref", sa.String(length=64), nullable=True),
        sa.Column("previous_hash", sa.String(length=64), nullable=False),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("content_hash"),
        sa.CheckConstraint("status IN ('success', 'failure', 'error')", name="chk_audit_log_status"),
    )
    op.create_index("ix_audit_log_id", "audit_log", ["id"])
    op.create_index("idx_audit_log_account_id", "audit_log", ["account_id"])
    op.create_index("idx_audit_log_timestamp", "audit_log", ["timestamp"])
    op.create_index("idx_audit_log_action", "audit_log", ["action"])
    op.create_index("idx_audit_log_resource", "audit_log", ["resource_type", "resource_id"])
    op.create_index("idx_audit_log_status", "audit_log", ["status"])

    if op.get_bind().dialect.name == "postgresql":
        op.execute(PREVENT_UPDATE_FUNCTION)
        op.execute(PREVENT_DELETE_FUNCTION)
        op.execute(
            "CREATE TRIGGER audit_log_prevent_update BEFORE UPDATE ON audit_log "
            "FOR EACH ROW EXECUTE FUNCTION prevent_audit_log_update()"
        )
        op.execute(
            "CREATE TRIGGER audit_log_prevent_delete BEFORE DELETE ON audit_log "
            "FOR EACH ROW EXECUTE FUNCTION prevent_audit_log_delete()"
        )


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP TRIGGER IF EXISTS audit_log_prevent_delete ON audit_log")
        op.execute("DROP TRIGGER IF EXISTS audit_log_prevent_update ON audit_log")
        op.execute("DROP FUNCTION IF EXISTS prevent_audit_log_delete()")
        op.execute("DROP FUNCTION IF EXISTS prevent_audit_log_update()")

    op.drop_index("idx_audit_log_status", table_name="audit_log")
    op.drop_index("idx_audit_log_resource", table_name="audit_log")
    op.drop_index("idx_audit_log_action", table_name="audit_log")
    op.drop_index("idx_audit_log_timestamp", table_name="audit_log")
    op.drop_index("idx_audit_log_account_id", table_name="audit_log")
    op.drop_index("ix_audit_log_id", table_name="audit_log")
    op.drop_table("audit_log")

    op.drop_index("ix_auth_sessions_session_key", table_name="auth_sessions")
    op.drop_index("ix_auth_sessions_id", table_name="auth_sessions")
    op.drop_table("auth_sessions")

    op.drop_index("idx_accounts_role", table_name="accounts")
    op.drop_index("idx_accounts_email", table_name="accounts")
    op.drop_index("ix_accounts_id", table_name="accounts")
    op.drop_table("accounts")
