"""Audit ledger model with storage-enforced immutability."""

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Index, JSON, CheckConstraint, DDL, event,
)

from authcore.core.database import Base


# Every column except account_id, which may only ever go from a value to NULL.
IMMUTABLE_COLUMNS = (
    "id",
    "timestamp",
    "account_email",
    "account_role",
    "action",
    "resource_type",
    "resource_id",
    "ip_address",
    "user_agent",
    "request_method",
    "request_path",
    "status",
    "error_code",
    "error_message",
    "metadata",
    "account_ref",
    "previous_hash",
    "content_hash",
)

AUDIT_STATUSES = ("success", "failure", "error")


class AuditLog(Base):
    """Append-only, hash-chained record of security-relevant events."""

    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    account_email = Column(String(255), nullable=True)
    account_role = Column(String(50), nullable=True)
    action = Column(String(100), nullable=False)
    resource_type = Column(String(100), nullable=True)
    resource_id = Column(String(128), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    request_method = Column(String(10), nullable=True)
    request_path = Column(String(500), nullable=True)
    status = Column(String(20), nullable=False)
    error_code = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    # sha256 of the original account_id; survives the id being cleared
    account_ref = Column(String(64), nullable=True)
    previous_hash = Column(String(64), nullable=False)
    content_hash = Column(String(64), nullable=False, unique=True)

    __table_args__ = (
        Index("idx_audit_log_account_id", "account_id"),
        Index("idx_audit_log_timestamp", "timestamp"),
        Index("idx_audit_log_action", "action"),
        Index("idx_audit_log_resource", "resource_type", "resource_id"),
        Index("idx_audit_log_status", "status"),
        CheckConstraint(
            "status IN ('success', 'failure', 'error')",
            name="chk_audit_log_status",
        ),
    )

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', status='{self.status}')>"


def _changed(null_safe_distinct: str) -> str:
    return " OR\n        ".join(
        null_safe_distinct.format(col=col) for col in IMMUTABLE_COLUMNS
    )


_SQLITE_CHANGED = _changed('OLD."{col}" IS NOT NEW."{col}"')
# json has no equality operator in PostgreSQL, so compare every column as text.
_POSTGRES_CHANGED = _changed('CAST(OLD."{col}" AS text) IS DISTINCT FROM CAST(NEW."{col}" AS text)')


SQLITE_PREVENT_UPDATE = f"""
CREATE TRIGGER IF NOT EXISTS audit_log_prevent_update
BEFORE UPDATE ON audit_log
FOR EACH ROW
WHEN (
        {_SQLITE_CHANGED} OR
        (OLD.account_id IS NOT NEW.account_id AND NEW.account_id IS NOT NULL)
)
BEGIN
    SELECT RAISE(ABORT, 'Audit log entries are immutable and cannot be modified');
END
"""

SQLITE_PREVENT_DELETE = """
CREATE TRIGGER IF NOT EXISTS audit_log_prevent_delete
BEFORE DELETE ON audit_log
FOR EACH ROW
BEGIN
    SELECT RAISE(ABORT, 'Audit log entries are immutable and cannot be deleted');
END
"""

POSTGRES_PREVENT_UPDATE_FUNCTION = f"""
CREATE OR REPLACE FUNCTION prevent_audit_log_update()
RETURNS TRIGGER AS $$
BEGIN
    IF (
        {_POSTGRES_CHANGED} OR
        (OLD.account_id IS DISTINCT FROM NEW.account_id AND NEW.account_id IS NOT NULL)
    ) THEN
        RAISE EXCEPTION 'Audit log entries are immutable and cannot be modified';
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql
"""

POSTGRES_PREVENT_DELETE_FUNCTION = """
CREATE OR REPLACE FUNCTION prevent_audit_log_delete()
RETURNS TRIGGER AS $$
BEGIN
    RAISE EXCEPTION 'Audit log entries are immutable and cannot be deleted';
END;
$$ LANGUAGE plpgsql
"""

POSTGRES_TRIGGERS = (
    "DROP TRIGGER IF EXISTS audit_log_prevent_update ON audit_log",
    "DROP TRIGGER IF EXISTS audit_log_prevent_delete ON audit_log",
    """
    CREATE TRIGGER audit_log_prevent_update
    BEFORE UPDATE ON audit_log
    FOR EACH ROW EXECUTE FUNCTION prevent_audit_log_update()
    """,
    """
    CREATE TRIGGER audit_log_prevent_delete
    BEFORE DELETE ON audit_log
    FOR EACH ROW EXECUTE FUNCTION prevent_audit_log_delete()
    """,
)


for _statement in (SQLITE_PREVENT_UPDATE, SQLITE_PREVENT_DELETE):
    event.listen(AuditLog.__table__, "after_create", DDL(_statement).execute_if(dialect="sqlite"))

for _statement in (POSTGRES_PREVENT_UPDATE_FUNCTION, POSTGRES_PREVENT_DELETE_FUNCTION, *POSTGRES_TRIGGERS):
    event.listen(AuditLog.__table__, "after_create", DDL(_statement).execute_if(dialect="postgresql"))
