"""Account service - creation, lookup and erasure of accounts"""

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session
from typing import Optional

from authcore.models.account import Account
from authcore.models.audit import AuditLog
from authcore.models.session import AuthSession
from authcore.core.security import get_password_hash
from authcore.core.exceptions import ResourceAlreadyExistsError, ResourceNotFoundError, AuthorizationError
from authcore.services.audit_ledger import AuditAction, AuditEntry, RequestContext, audit_ledger
import logging

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class AccountService:
    """Service for account management"""

    @staticmethod
    def create_account(
        db: Session,
        *,
        email: str,
        password: str,
        role: str = "staff",
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        is_active: bool = True,
        is_verified: bool = True,
    ) -> Account:
        """
        Create new account

        Args:
            db: Database session
            email: Login email (stored lower-cased)
            password: Plain text password, hashed with bcrypt

        Returns:
            Created account
        """
        email = normalize_email(email)
        if AccountService.get_by_email(db, email):
            raise ResourceAlreadyExistsError("Account")

        account = Account(
            email=email,
            password_hash=get_password_hash(password),
            role=role,
            first_name=first_name,
            last_name=last_name,
            is_active=is_active,
            is_verified=is_verified,
            failed_login_attempts=0,
        )
        db.add(account)
        db.commit()
        db.refresh(account)

        logger.info("Created account id=%s (role: %s)", account.id, account.role)
        return account

    @staticmethod
    def get_by_id(db: Session, account_id: int) -> Optional[Account]:
        """Get account by ID"""
        return db.get(Account, account_id)

    @staticmethod
    def get_by_email(db: Session, email: str) -> Optional[Account]:
        """Get account by email"""
        return db.execute(
            select(Account).where(Account.email == normalize_email(email))
        ).scalar_one_or_none()

    @staticmethod
    def delete_account(
        db: Session,
        account_id: int,
        *,
        actor: Account,
        context: RequestContext,
    ) -> None:
        """
        Erase an account while keeping its audit history readable.

        The account's audit rows lose their ``account_id`` (the single
        mutation the ledger's trigger permits); the denormalized email and
        role stay on every row.
        """
        account = AccountService.get_by_id(db, account_id)
        if not account:
            raise ResourceNotFoundError("Account")
        if account.id == actor.id:
            raise AuthorizationError("Cannot delete your own account")

        email, role = account.email, account.role
        try:
            detached = db.execute(
                update(AuditLog)
                .where(AuditLog.account_id == account_id)
                .values(account_id=None)
                .execution_options(synchronize_session=False)
            ).rowcount
            db.execute(delete(AuthSession).where(AuthSession.account_id == account_id))
            db.delete(account)
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info("Deleted account id=%s (%s audit rows detached)", account_id, detached)
        audit_ledger.append(db, AuditEntry(
            action=AuditAction.ACCOUNT_DELETE,
            status="success",
            account_id=actor.id,
            account_email=actor.email,
            account_role=actor.role,
            resource_type="account",
            resource_id=str(account_id),
            context=context,
            metadata={"deleted_email": email, "deleted_role": role, "detached_audit_rows": detached},
        ))


# Singleton instance
account_service = AccountService()
