"""Single-active-session persistence."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from authcore.core.clock import Clock, utcnow
from authcore.core.security import hash_token, token_matches
from authcore.models.account import Account
from authcore.models.session import AuthSession

logger = logging.getLogger(__name__)


class SessionStore:
    """
    Persisted record of the one refresh credential an account may use.

    ``auth_sessions.account_id`` is unique, so the table holds at most one
    row per account; a login replaces that row inside one transaction.
    """

    def __init__(self, clock: Clock = utcnow) -> None:
        self.clock = clock

    def _live_session(self, db: Session, account_id: int) -> Optional[AuthSession]:
        return db.execute(
            select(AuthSession).where(
                AuthSession.account_id == account_id,
                AuthSession.revoked == False,  # noqa: E712
                AuthSession.expires_at > self.clock(),
            )
        ).scalar_one_or_none()

    def replace_session(
        self,
        db: Session,
        *,
        account_id: int,
        session_key: str,
        refresh_token: str,
        expires_at: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthSession:
        """Revoke whatever session the account had and install this one."""
        try:
            # Serializes concurrent logins for the same account (no-op on SQLite).
            db.execute(
                select(Account.id).where(Account.id == account_id).with_for_update()
            )
            replaced = db.execute(
                delete(AuthSession).where(AuthSession.account_id == account_id)
            ).rowcount
            record = AuthSession(
                account_id=account_id,
                session_key=session_key,
                token_hash=hash_token(refresh_token),
                issued_at=self.clock(),
                expires_at=expires_at,
                revoked=False,
                ip_address=ip_address,
                user_agent=user_agent[:500] if user_agent else None,
            )
            db.add(record)
            db.commit()
        except Exception:
            db.rollback()
            raise
        if replaced:
            logger.info("Session replaced for account id=%s", account_id)
        return record

    def is_current(self, db: Session, account_id: int, refresh_token: str) -> bool:
        """True only if this refresh credential is the account's live session."""
        record = self._live_session(db, account_id)
        return record is not None and token_matches(refresh_token, record.token_hash)

    def has_active_session(self, db: Session, account_id: int, session_key: str) -> bool:
        """True if the login identified by ``session_key`` is still the live one."""
        record = self._live_session(db, account_id)
        return record is not None and record.session_key == session_key

    def rotate(
        self,
        db: Session,
        *,
        account_id: int,
        old_refresh_token: str,
        new_refresh_token: str,
        expires_at: datetime,
    ) -> bool:
        """
        Swap the stored credential on the same session row.

        Compare-and-swap on the old digest: of two concurrent refreshes with
        the same token only one succeeds.
        """
        try:
            rowcount = db.execute(
                update(AuthSession)
                .where(
                    AuthSession.account_id == account_id,
                    AuthSession.token_hash == hash_token(old_refresh_token),
                    AuthSession.revoked == False,  # noqa: E712
                )
                .values(token_hash=hash_token(new_refresh_token), expires_at=expires_at)
                .execution_options(synchronize_session=False)
            ).rowcount
            db.commit()
        except Exception:
            db.rollback()
            raise
        return rowcount == 1

    def revoke(self, db: Session, account_id: int) -> bool:
        """Mark the account's live session revoked. Returns False if there was none."""
        try:
            rowcount = db.execute(
                update(AuthSession)
                .where(AuthSession.account_id == account_id, AuthSession.revoked == False)  # noqa: E712
                .values(revoked=True, revoked_at=self.clock())
                .execution_options(synchronize_session=False)
            ).rowcount
            db.commit()
        except Exception:
            db.rollback()
            raise
        return rowcount > 0


session_store = SessionStore()
