"""Per-account failed-attempt counter and timed lock."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from authcore.config import FailPolicy, settings
from authcore.core.clock import Clock, naive_utc, utcnow
from authcore.core.exceptions import AccountLockedError, AuthUnavailableError
from authcore.models.account import Account

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FailureOutcome:
    attempts: int
    locked_until: Optional[datetime]

    @property
    def locked(self) -> bool:
        return self.locked_until is not None


class LockoutGuard:
    """
    Lockout state machine: open -> counting -> locked -> (expired) open.

    Every counter change is a single UPDATE statement so concurrent failed
    attempts for the same account cannot lose increments.
    """

    def __init__(
        self,
        threshold: Optional[int] = None,
        duration: Optional[timedelta] = None,
        fail_policy: Optional[FailPolicy] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.threshold = threshold or settings.LOCKOUT_THRESHOLD
        self.duration = duration or settings.LOCKOUT_DURATION
        self.fail_policy = fail_policy or settings.LOCKOUT_FAIL_POLICY
        self.clock = clock

    def evaluate(self, db: Session, email: str) -> None:
        """
        Raise AccountLockedError while the account's lock is in force.

        Unknown accounts pass through untouched so the caller's generic
        credential failure is the only answer they ever see. A lock whose
        expiry has passed is cleared here, together with the counter.
        """
        try:
            row = db.execute(
                select(Account.id, Account.locked_until).where(Account.email == email)
            ).first()
            if row is None or row.locked_until is None:
                return

            now = self.clock()
            locked_until = naive_utc(row.locked_until)
            if locked_until > now:
                raise AccountLockedError(locked_until)

            db.execute(
                update(Account)
                .where(Account.id == row.id, Account.locked_until <= now)
                .values(failed_login_attempts=0, locked_until=None)
            )
            db.commit()
            logger.info("Expired lock cleared for account id=%s", row.id)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Lockout check failed (policy=%s)", self.fail_policy.value)
            if self.fail_policy == FailPolicy.FAIL_CLOSED:
                raise AuthUnavailableError()

    def record_failure(self, db: Session, email: str) -> Optional[FailureOutcome]:
        """Count one failed attempt; lock the account when the threshold is reached."""
        try:
            row = db.execute(
                update(Account)
                .where(Account.email == email)
                .values(failed_login_attempts=Account.failed_login_attempts + 1)
                .returning(Account.id, Account.failed_login_attempts)
            ).first()
            if row is None:
                db.commit()
                return None

            locked_until = None
            if row.failed_login_attempts >= self.threshold:
                locked_until = self.clock() + self.duration
                db.execute(
                    update(Account)
                    .where(Account.id == row.id)
                    .values(locked_until=locked_until)
                )
                logger.warning(
                    "Account id=%s locked after %s failed attempts until %s",
                    row.id, row.failed_login_attempts, locked_until.isoformat(),
                )
            db.commit()
            return FailureOutcome(attempts=row.failed_login_attempts, locked_until=locked_until)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to record failed login attempt")
            return None

    def record_success(self, db: Session, account_id: int) -> None:
        """Reset the counter and clear any lock."""
        try:
            db.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(failed_login_attempts=0, locked_until=None, last_login_at=self.clock())
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to reset failed login attempts for account id=%s", account_id)


lockout_guard = LockoutGuard()
