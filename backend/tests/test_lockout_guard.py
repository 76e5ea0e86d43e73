from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from authcore.config import FailPolicy
from authcore.core.exceptions import AccountLockedError, AuthUnavailableError
from authcore.services.lockout_guard import LockoutGuard


def _guard(clock, policy=FailPolicy.FAIL_CLOSED):
    return LockoutGuard(threshold=10, duration=timedelta(minutes=30), fail_policy=policy, clock=clock)


def _break_storage(monkeypatch, db):
    def broken(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database unavailable"))
    monkeypatch.setattr(db, "execute", broken)


def test_tenth_failure_locks_account(db_session, make_account, clock):
    account = make_account()
    guard = _guard(clock)

    for attempt in range(1, 10):
        outcome = guard.record_failure(db_session, "staff@example.com")
        assert outcome.attempts == attempt
        assert not outcome.locked
    guard.evaluate(db_session, "staff@example.com")

    outcome = guard.record_failure(db_session, "staff@example.com")
    assert outcome.attempts == 10
    assert outcome.locked_until == clock.now + timedelta(minutes=30)

    with pytest.raises(AccountLockedError) as exc_info:
        guard.evaluate(db_session, "staff@example.com")
    assert exc_info.value.retry_at == outcome.locked_until

    db_session.refresh(account)
    assert account.failed_login_attempts == 10


def test_lock_holds_until_duration_elapses(db_session, make_account, clock):
    make_account()
    guard = _guard(clock)
    for _ in range(10):
        guard.record_failure(db_session, "staff@example.com")

    clock.advance(minutes=29, seconds=59)
    with pytest.raises(AccountLockedError):
        guard.evaluate(db_session, "staff@example.com")


def test_expired_lock_is_cleared_on_evaluation(db_session, make_account, clock):
    account = make_account()
    guard = _guard(clock)
    for _ in range(10):
        guard.record_failure(db_session, "staff@example.com")

    clock.advance(minutes=30)
    guard.evaluate(db_session, "staff@example.com")

    db_session.refresh(account)
    assert account.failed_login_attempts == 0
    assert account.locked_until is None

    # Clearing is idempotent
    guard.evaluate(db_session, "staff@example.com")
    db_session.refresh(account)
    assert account.failed_login_attempts == 0


def test_record_success_resets_counter(db_session, make_account, clock):
    account = make_account()
    guard = _guard(clock)
    for _ in range(4):
        guard.record_failure(db_session, "staff@example.com")

    guard.record_success(db_session, account.id)

    db_session.refresh(account)
    assert account.failed_login_attempts == 0
    assert account.locked_until is None
    assert account.last_login_at == clock.now


def test_unknown_email_is_never_locked(db_session, clock):
    guard = _guard(clock)
    assert guard.record_failure(db_session, "ghost@example.com") is None
    assert guard.evaluate(db_session, "ghost@example.com") is None


def test_storage_failure_fail_closed_refuses(db_session, make_account, clock, monkeypatch):
    make_account()
    guard = _guard(clock, FailPolicy.FAIL_CLOSED)
    _break_storage(monkeypatch, db_session)
    with pytest.raises(AuthUnavailableError):
        guard.evaluate(db_session, "staff@example.com")


def test_storage_failure_fail_open_proceeds(db_session, make_account, clock, monkeypatch):
    make_account()
    guard = _guard(clock, FailPolicy.FAIL_OPEN)
    _break_storage(monkeypatch, db_session)
    assert guard.evaluate(db_session, "staff@example.com") is None


def test_record_failure_swallows_storage_errors(db_session, clock, monkeypatch):
    guard = _guard(clock)
    _break_storage(monkeypatch, db_session)
    assert guard.record_failure(db_session, "staff@example.com") is None
