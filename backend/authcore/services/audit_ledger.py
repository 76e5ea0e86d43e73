"""Append-only, hash-chained audit ledger."""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, text
from sqlalchemy.orm import Session

from authcore.core.clock import Clock, naive_utc, utcnow
from authcore.core.metrics import AUDIT_APPEND_FAILURES
from authcore.models.audit import AUDIT_STATUSES, AuditLog

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64

# Key for pg_advisory_xact_lock; serializes appends so the chain never forks.
_CHAIN_LOCK_KEY = 0x61756474


class AuditAction:
    LOGIN = "auth.login"
    LOGIN_BLOCKED = "auth.login_blocked"
    ACCOUNT_LOCKED = "auth.account_locked"
    TOKEN_REFRESH = "auth.token_refresh"
    SESSION_TERMINATED = "auth.session_terminated"
    LOGOUT = "auth.logout"
    ACCESS_DENIED = "access.denied"
    ACCOUNT_DELETE = "account.delete"
    PRIVILEGE_CHANGE = "privilege.change"
    DATA_EXPORT = "data.export"


@dataclass(frozen=True)
class RequestContext:
    """Request metadata recorded alongside each audit entry."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    method: Optional[str] = None
    path: Optional[str] = None


@dataclass
class AuditEntry:
    action: str
    status: str
    account_id: Optional[int] = None
    account_email: Optional[str] = None
    account_role: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    context: RequestContext = field(default_factory=RequestContext)
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ChainVerification:
    ok: bool
    checked: int
    broken_at: Optional[int] = None
    reason: Optional[str] = None


def _canonical_timestamp(value: datetime) -> str:
    return naive_utc(value).isoformat(timespec="microseconds")


def _normalize_metadata(metadata: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    # Hash exactly what the JSON column will give back.
    if metadata is None:
        return None
    return json.loads(json.dumps(metadata, default=str))


def account_reference(account_id: Optional[int]) -> Optional[str]:
    """Digest of the acting account id, kept on the row after the id is cleared."""
    if account_id is None:
        return None
    return hashlib.sha256(str(account_id).encode("utf-8")).hexdigest()


def compute_entry_hash(row: Dict[str, Any], previous_hash: str) -> str:
    """
    SHA-256 over the canonical JSON of an entry plus its predecessor's hash.

    ``id`` is storage-assigned and ``account_id`` may legitimately be nulled
    when the account is erased, so neither is hashed directly. The account
    is bound through ``account_ref`` instead, together with the denormalized
    email and role.
    """
    payload = {
        "timestamp": _canonical_timestamp(row["timestamp"]),
        "account_email": row.get("account_email"),
        "account_role": row.get("account_role"),
        "action": row["action"],
        "resource_type": row.get("resource_type"),
        "resource_id": row.get("resource_id"),
        "ip_address": row.get("ip_address"),
        "user_agent": row.get("user_agent"),
        "request_method": row.get("request_method"),
        "request_path": row.get("request_path"),
        "status": row["status"],
        "error_code": row.get("error_code"),
        "error_message": row.get("error_message"),
        "metadata": row.get("metadata"),
        "account_ref": row.get("account_ref"),
        "previous_hash": previous_hash,
    }
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def _row_fields(entry: AuditLog) -> Dict[str, Any]:
    return {
        "timestamp": entry.timestamp,
        "account_email": entry.account_email,
        "account_role": entry.account_role,
        "action": entry.action,
        "resource_type": entry.resource_type,
        "resource_id": entry.resource_id,
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "request_method": entry.request_method,
        "request_path": entry.request_path,
        "status": entry.status,
        "error_code": entry.error_code,
        "error_message": entry.error_message,
        "metadata": entry.metadata_json,
        "account_ref": entry.account_ref,
    }


class AuditLedger:
    """Persist tamper-evident audit trail entries."""

    def __init__(self, clock: Clock = utcnow) -> None:
        self.clock = clock

    def append(self, db: Session, entry: AuditEntry) -> Optional[AuditLog]:
        """
        Chain and insert one entry, committing the session.

        Best effort: any failure is rolled back, logged and swallowed so the
        security action that produced the event is never undone by it.
        """
        try:
            if entry.status not in AUDIT_STATUSES:
                raise ValueError(f"Unknown audit status: {entry.status}")

            if db.get_bind().dialect.name == "postgresql":
                db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": _CHAIN_LOCK_KEY})

            previous_hash = db.execute(
                select(AuditLog.content_hash).order_by(AuditLog.id.desc()).limit(1)
            ).scalar() or GENESIS_HASH

            ctx = entry.context
            fields = {
                "timestamp": self.clock(),
                "account_email": entry.account_email,
                "account_role": entry.account_role,
                "action": entry.action,
                "resource_type": entry.resource_type,
                "resource_id": str(entry.resource_id) if entry.resource_id is not None else None,
                "ip_address": ctx.ip_address,
                "user_agent": ctx.user_agent,
                "request_method": ctx.method,
                "request_path": ctx.path,
                "status": entry.status,
                "error_code": entry.error_code,
                "error_message": entry.error_message,
                "metadata": _normalize_metadata(entry.metadata),
                "account_ref": account_reference(entry.account_id),
            }
            content_hash = compute_entry_hash(fields, previous_hash)
            metadata = fields.pop("metadata")
            record = AuditLog(
                account_id=entry.account_id,
                previous_hash=previous_hash,
                content_hash=content_hash,
                metadata_json=metadata,
                **fields,
            )
            db.add(record)
            db.commit()
            return record
        except Exception:
            db.rollback()
            AUDIT_APPEND_FAILURES.inc()
            logger.exception("Failed to append audit entry action=%s", entry.action)
            return None

    def verify_chain(self, db: Session, batch_size: int = 500) -> ChainVerification:
        """Recompute every hash from genesis in insertion order."""
        expected_previous = GENESIS_HASH
        checked = 0
        rows = db.execute(
            select(AuditLog)
            .order_by(AuditLog.id.asc())
            .execution_options(yield_per=batch_size, populate_existing=True)
        ).scalars()
        for entry in rows:
            if entry.previous_hash != expected_previous:
                return ChainVerification(
                    ok=False, checked=checked, broken_at=entry.id,
                    reason="previous_hash does not match the preceding entry",
                )
            recomputed = compute_entry_hash(_row_fields(entry), entry.previous_hash)
            if recomputed != entry.content_hash:
                return ChainVerification(
                    ok=False, checked=checked, broken_at=entry.id,
                    reason="content_hash does not match the entry's content",
                )
            if entry.account_id is not None and account_reference(entry.account_id) != entry.account_ref:
                return ChainVerification(
                    ok=False, checked=checked, broken_at=entry.id,
                    reason="account_id does not match the account the entry was recorded for",
                )
            expected_previous = recomputed
            checked += 1
        return ChainVerification(ok=True, checked=checked)

    def list_entries(
        self,
        db: Session,
        *,
        limit: int = 100,
        offset: int = 0,
        action: Optional[str] = None,
        account_id: Optional[int] = None,
    ) -> List[AuditLog]:
        query = select(AuditLog)
        if action:
            query = query.where(AuditLog.action == action)
        if account_id is not None:
            query = query.where(AuditLog.account_id == account_id)
        query = query.order_by(AuditLog.id.desc()).limit(limit).offset(offset)
        return list(db.execute(query).scalars())

    # Convenience wrappers for the common event shapes

    def log_auth_event(
        self,
        db: Session,
        context: RequestContext,
        action: str,
        status: str,
        *,
        account=None,
        email: Optional[str] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        return self.append(db, AuditEntry(
            action=action,
            status=status,
            account_id=account.id if account is not None else None,
            account_email=account.email if account is not None else email,
            account_role=account.role if account is not None else None,
            resource_type="authentication",
            context=context,
            error_code=error_code,
            error_message=error_message,
            metadata=metadata,
        ))

    def log_failed_access(
        self,
        db: Session,
        context: RequestContext,
        reason: str,
        *,
        account=None,
        email: Optional[str] = None,
    ) -> Optional[AuditLog]:
        return self.append(db, AuditEntry(
            action=AuditAction.ACCESS_DENIED,
            status="failure",
            account_id=account.id if account is not None else None,
            account_email=account.email if account is not None else email,
            account_role=account.role if account is not None else None,
            context=context,
            error_message=reason,
            metadata={"reason": reason},
        ))

    def log_privilege_change(
        self, db: Session, context: RequestContext, actor, target_account_id: int, changes: Dict[str, Any]
    ) -> Optional[AuditLog]:
        """
        Record a role or permission change made by ``actor``.

        Called by account-administration collaborators outside this package.
        """
        return self.append(db, AuditEntry(
            action=AuditAction.PRIVILEGE_CHANGE,
            status="success",
            account_id=actor.id,
            account_email=actor.email,
            account_role=actor.role,
            resource_type="account",
            resource_id=str(target_account_id),
            context=context,
            metadata={"changes": changes},
        ))

    def log_data_export(
        self, db: Session, context: RequestContext, actor, export_type: str, record_count: int
    ) -> Optional[AuditLog]:
        """Record a bulk export; called by the export collaborators outside this package."""
        return self.append(db, AuditEntry(
            action=AuditAction.DATA_EXPORT,
            status="success",
            account_id=actor.id,
            account_email=actor.email,
            account_role=actor.role,
            resource_type=export_type,
            context=context,
            metadata={"export_type": export_type, "record_count": record_count},
        ))


audit_ledger = AuditLedger()
