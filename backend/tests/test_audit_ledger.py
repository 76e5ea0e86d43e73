from datetime import datetime

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import text, update
from sqlalchemy.exc import DBAPIError

from authcore.models.audit import AuditLog
from authcore.services.audit_ledger import (
    GENESIS_HASH,
    AuditAction,
    AuditEntry,
    AuditLedger,
    account_reference,
    compute_entry_hash,
)


def _append(ledger, db, account=None, action=AuditAction.LOGIN, **kwargs):
    entry = AuditEntry(
        action=action,
        status=kwargs.pop("status", "success"),
        account_id=account.id if account else None,
        account_email=account.email if account else None,
        account_role=account.role if account else None,
        resource_type="authentication",
        **kwargs,
    )
    return ledger.append(db, entry)


def _failures():
    return REGISTRY.get_sample_value("authcore_audit_append_failures_total") or 0.0


def test_entries_form_hash_chain(db_session, make_account, clock, context):
    account = make_account()
    ledger = AuditLedger(clock=clock)

    first = _append(ledger, db_session, account, context=context)
    clock.advance(seconds=5)
    second = _append(ledger, db_session, account, action=AuditAction.LOGOUT, metadata={"session_revoked": True})

    assert first.previous_hash == GENESIS_HASH
    assert second.previous_hash == first.content_hash
    assert first.content_hash != second.content_hash

    result = ledger.verify_chain(db_session)
    assert result.ok
    assert result.checked == 2


def test_empty_ledger_verifies(db_session):
    result = AuditLedger().verify_chain(db_session)
    assert result.ok
    assert result.checked == 0


def test_hash_covers_previous_hash():
    row = {"timestamp": datetime(2026, 1, 1), "action": "auth.login", "status": "success"}
    assert compute_entry_hash(row, GENESIS_HASH) != compute_entry_hash(row, "f" * 64)


@pytest.mark.parametrize(
    "column, value",
    [
        ("action", "'auth.logout'"),
        ("timestamp", "'2001-01-01 00:00:00'"),
        ("previous_hash", "'" + "a" * 64 + "'"),
        ("account_email", "'someone-else@example.com'"),
        ("metadata", "'{}'"),
        ("account_ref", "'" + "b" * 64 + "'"),
    ],
)
def test_audit_rows_cannot_be_modified(db_session, make_account, column, value):
    account = make_account()
    entry = _append(AuditLedger(), db_session, account, metadata={"k": "v"})

    with pytest.raises(DBAPIError, match="immutable"):
        db_session.execute(text(f'UPDATE audit_log SET "{column}" = {value} WHERE id = :id'), {"id": entry.id})
    db_session.rollback()


def test_audit_rows_cannot_be_deleted(db_session, make_account):
    entry = _append(AuditLedger(), db_session, make_account())

    with pytest.raises(DBAPIError, match="immutable"):
        db_session.execute(text("DELETE FROM audit_log WHERE id = :id"), {"id": entry.id})
    db_session.rollback()


def test_account_id_may_only_be_cleared(db_session, make_account):
    account = make_account()
    other = make_account(email="other@example.com")
    ledger = AuditLedger()
    entry = _append(ledger, db_session, account)
    entry_id = entry.id

    with pytest.raises(DBAPIError, match="immutable"):
        db_session.execute(
            update(AuditLog).where(AuditLog.id == entry_id).values(account_id=other.id)
        )
    db_session.rollback()

    db_session.execute(update(AuditLog).where(AuditLog.id == entry_id).values(account_id=None))
    db_session.commit()

    stored = db_session.get(AuditLog, entry_id)
    db_session.refresh(stored)
    assert stored.account_id is None
    assert stored.account_email == "staff@example.com"
    assert stored.account_role == "staff"

    # Once cleared it cannot be reattached
    with pytest.raises(DBAPIError, match="immutable"):
        db_session.execute(
            update(AuditLog).where(AuditLog.id == entry_id).values(account_id=account.id)
        )
    db_session.rollback()

    assert ledger.verify_chain(db_session).ok


def test_out_of_band_edit_breaks_chain(db_session, make_account):
    ledger = AuditLedger()
    account = make_account()
    _append(ledger, db_session, account)
    tampered = _append(ledger, db_session, account, action=AuditAction.TOKEN_REFRESH)
    _append(ledger, db_session, account, action=AuditAction.LOGOUT)
    tampered_id = tampered.id

    # Simulate someone with DDL rights bypassing the trigger
    db_session.execute(text("DROP TRIGGER audit_log_prevent_update"))
    db_session.execute(
        text("UPDATE audit_log SET action = 'auth.login' WHERE id = :id"), {"id": tampered_id}
    )
    db_session.commit()

    result = ledger.verify_chain(db_session)
    assert not result.ok
    assert result.broken_at == tampered_id
    assert result.checked == 1


def test_moving_entry_to_another_account_breaks_chain(db_session, make_account):
    ledger = AuditLedger()
    account = make_account()
    other = make_account(email="other@example.com")
    entry = _append(ledger, db_session, account)
    entry_id = entry.id
    assert entry.account_ref == account_reference(account.id)

    db_session.execute(text("DROP TRIGGER audit_log_prevent_update"))
    db_session.execute(
        text("UPDATE audit_log SET account_id = :other WHERE id = :id"), {"other": other.id, "id": entry_id}
    )
    db_session.commit()

    result = ledger.verify_chain(db_session)
    assert not result.ok
    assert result.broken_at == entry_id
    assert "account_id" in result.reason


def test_append_failure_is_swallowed(db_session):
    before = _failures()
    assert _append(AuditLedger(), db_session, status="not-a-status") is None
    assert _failures() == before + 1
    assert AuditLedger().verify_chain(db_session).checked == 0


def test_list_entries_filters_newest_first(db_session, make_account, clock):
    ledger = AuditLedger(clock=clock)
    staff = make_account()
    other = make_account(email="other@example.com")
    _append(ledger, db_session, staff)
    _append(ledger, db_session, other)
    _append(ledger, db_session, staff, action=AuditAction.LOGOUT)

    entries = ledger.list_entries(db_session, account_id=staff.id)
    assert [e.action for e in entries] == [AuditAction.LOGOUT, AuditAction.LOGIN]

    logins = ledger.list_entries(db_session, action=AuditAction.LOGIN, limit=1)
    assert len(logins) == 1
    assert logins[0].account_email == "other@example.com"


def test_helper_events(db_session, make_account, context):
    ledger = AuditLedger()
    admin = make_account(email="admin@example.com", role="admin")

    denied = ledger.log_failed_access(db_session, context, "Admin access required", email="staff@example.com")
    change = ledger.log_privilege_change(db_session, context, admin, 42, {"role": ["staff", "admin"]})
    export = ledger.log_data_export(db_session, context, admin, "patients", 17)
    attributed = ledger.log_failed_access(db_session, context, "Admin access required", account=admin)

    assert denied.action == AuditAction.ACCESS_DENIED
    assert denied.status == "failure"
    assert denied.account_id is None
    assert attributed.account_id == admin.id
    assert attributed.account_role == "admin"
    assert change.resource_id == "42"
    assert change.metadata_json == {"changes": {"role": ["staff", "admin"]}}
    assert export.metadata_json["record_count"] == 17
    assert ledger.verify_chain(db_session).checked == 4
