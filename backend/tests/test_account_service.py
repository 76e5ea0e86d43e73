from datetime import datetime

import pytest
from sqlalchemy import select

from authcore.core.exceptions import AuthorizationError, ResourceAlreadyExistsError, ResourceNotFoundError
from authcore.core.security import verify_password
from authcore.models.audit import AuditLog
from authcore.models.session import AuthSession
from authcore.services.account_service import account_service
from authcore.services.audit_ledger import AuditAction, AuditLedger


def test_create_account_normalizes_email_and_hashes_password(db_session, make_account):
    account = make_account(email="  Doctor@Example.COM ", password="s3cret-pass")
    assert account.email == "doctor@example.com"
    assert account.password_hash != "s3cret-pass"
    assert verify_password("s3cret-pass", account.password_hash)
    assert account.failed_login_attempts == 0


def test_duplicate_email_rejected(db_session, make_account):
    make_account()
    with pytest.raises(ResourceAlreadyExistsError):
        make_account(email="STAFF@example.com")


def test_delete_account_detaches_audit_history(db_session, make_account, context):
    admin = make_account(email="admin@example.com", role="admin")
    staff = make_account(email="staff@example.com", role="staff")
    staff_id = staff.id
    ledger = AuditLedger()
    ledger.log_auth_event(db_session, context, AuditAction.LOGIN, "success", account=staff)
    ledger.log_auth_event(db_session, context, AuditAction.LOGOUT, "success", account=staff)
    db_session.add(AuthSession(
        account_id=staff_id, session_key="sid-1", token_hash="0" * 64,
        expires_at=datetime(2099, 1, 1),
    ))
    db_session.commit()

    account_service.delete_account(db_session, staff_id, actor=admin, context=context)

    assert account_service.get_by_id(db_session, staff_id) is None
    assert db_session.execute(
        select(AuthSession).where(AuthSession.account_id == staff_id)
    ).first() is None

    entries = db_session.execute(select(AuditLog).order_by(AuditLog.id)).scalars().all()
    assert [e.action for e in entries] == [AuditAction.LOGIN, AuditAction.LOGOUT, AuditAction.ACCOUNT_DELETE]
    for entry in entries[:2]:
        assert entry.account_id is None
        assert entry.account_email == "staff@example.com"
        assert entry.account_role == "staff"

    deletion = entries[-1]
    assert deletion.account_email == "admin@example.com"
    assert deletion.resource_id == str(staff_id)
    assert deletion.metadata_json["detached_audit_rows"] == 2

    assert ledger.verify_chain(db_session).ok


def test_cannot_delete_self(db_session, make_account, context):
    admin = make_account(email="admin@example.com", role="admin")
    with pytest.raises(AuthorizationError):
        account_service.delete_account(db_session, admin.id, actor=admin, context=context)


def test_delete_missing_account(db_session, make_account, context):
    admin = make_account(email="admin@example.com", role="admin")
    with pytest.raises(ResourceNotFoundError):
        account_service.delete_account(db_session, 9999, actor=admin, context=context)
