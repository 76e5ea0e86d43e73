"""Login, refresh, logout and request authentication flows."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from authcore.config import FailPolicy, settings
from authcore.core.exceptions import (
    AccountInactiveError,
    AccountLockedError,
    AccountUnverifiedError,
    AuthErrorCode,
    AuthUnavailableError,
    InvalidCredentialsError,
    SessionTerminatedError,
)
from authcore.core.metrics import LOGIN_ATTEMPTS, SESSION_CHECK_FAILURES
from authcore.core.security import burn_password_check, generate_session_key, verify_password
from authcore.models.account import Account
from authcore.services.account_service import AccountService, account_service, normalize_email
from authcore.services.audit_ledger import AuditAction, AuditLedger, RequestContext, audit_ledger
from authcore.services.lockout_guard import LockoutGuard, lockout_guard
from authcore.services.session_store import SessionStore, session_store
from authcore.services.token_service import TokenPair, TokenService, token_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginResult:
    account: Account
    tokens: TokenPair


@dataclass(frozen=True)
class AuthenticatedPrincipal:
    """Identity established from a verified access token."""
    account_id: int
    email: Optional[str]
    role: Optional[str]
    session_key: str


class AuthGateway:
    """
    Coordinates TokenService, LockoutGuard, SessionStore and AuditLedger.

    Each flow runs its steps in a fixed order on the caller's session and
    reports failures only through the AuthError taxonomy.
    """

    def __init__(
        self,
        tokens: TokenService = token_service,
        lockout: LockoutGuard = lockout_guard,
        sessions: SessionStore = session_store,
        ledger: AuditLedger = audit_ledger,
        accounts: AccountService = account_service,
        session_check_policy: Optional[FailPolicy] = None,
        rotate_refresh_tokens: Optional[bool] = None,
    ) -> None:
        self.tokens = tokens
        self.lockout = lockout
        self.sessions = sessions
        self.ledger = ledger
        self.accounts = accounts
        self.session_check_policy = session_check_policy or settings.SESSION_CHECK_FAIL_POLICY
        self.rotate_refresh_tokens = (
            settings.ROTATE_REFRESH_TOKENS if rotate_refresh_tokens is None else rotate_refresh_tokens
        )

    def login(self, db: Session, email: str, password: str, context: RequestContext) -> LoginResult:
        email = normalize_email(email)

        try:
            self.lockout.evaluate(db, email)
        except AccountLockedError as exc:
            LOGIN_ATTEMPTS.labels("locked").inc()
            self.ledger.log_auth_event(
                db, context, AuditAction.LOGIN_BLOCKED, "failure",
                account=self.accounts.get_by_email(db, email),
                email=email,
                error_code=exc.code.value,
                metadata={"retry_at": exc.retry_at.isoformat()},
            )
            raise

        account = self.accounts.get_by_email(db, email)
        if account is None:
            burn_password_check(password)
            self._reject(db, context, email, None, "Account not found")
        if not verify_password(password, account.password_hash):
            self._reject(db, context, email, account, "Invalid password")

        # Disclosed only after the password matched.
        if not account.is_active:
            LOGIN_ATTEMPTS.labels("inactive").inc()
            self.ledger.log_auth_event(
                db, context, AuditAction.LOGIN, "failure",
                account=account,
                error_code=AuthErrorCode.ACCOUNT_INACTIVE.value,
                error_message="Account deactivated",
            )
            raise AccountInactiveError()
        if not account.is_verified:
            LOGIN_ATTEMPTS.labels("unverified").inc()
            self.ledger.log_auth_event(
                db, context, AuditAction.LOGIN, "failure",
                account=account,
                error_code=AuthErrorCode.ACCOUNT_UNVERIFIED.value,
                error_message="Account not verified",
            )
            raise AccountUnverifiedError()

        self.lockout.record_success(db, account.id)
        session_key = generate_session_key()
        tokens = self.tokens.issue_pair(account, session_key)
        self.sessions.replace_session(
            db,
            account_id=account.id,
            session_key=session_key,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.refresh_expires_at,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )
        self.ledger.log_auth_event(db, context, AuditAction.LOGIN, "success", account=account)
        LOGIN_ATTEMPTS.labels("success").inc()
        logger.info("Login succeeded for account id=%s", account.id)
        return LoginResult(account=account, tokens=tokens)

    def _reject(
        self,
        db: Session,
        context: RequestContext,
        email: str,
        account: Optional[Account],
        reason: str,
    ) -> None:
        """Count the failure, audit it with the real reason, answer generically."""
        outcome = self.lockout.record_failure(db, email)
        LOGIN_ATTEMPTS.labels("invalid_credentials").inc()
        self.ledger.log_auth_event(
            db, context, AuditAction.LOGIN, "failure",
            account=account,
            email=email,
            error_code=AuthErrorCode.INVALID_CREDENTIALS.value,
            error_message=reason,
            metadata={"failed_attempts": outcome.attempts} if outcome else None,
        )
        if outcome is not None and outcome.locked:
            self.ledger.log_auth_event(
                db, context, AuditAction.ACCOUNT_LOCKED, "success",
                account=account,
                email=email,
                metadata={
                    "failed_attempts": outcome.attempts,
                    "locked_until": outcome.locked_until.isoformat(),
                },
            )
        raise InvalidCredentialsError()

    def refresh(self, db: Session, refresh_token: str, context: RequestContext) -> LoginResult:
        """Exchange a live refresh credential for a new access (and refresh) token."""
        claims = self.tokens.verify_refresh(refresh_token)

        if not self.sessions.is_current(db, claims.account_id, refresh_token):
            self._session_terminated(db, context, claims.account_id, "Refresh token superseded or revoked")

        account = self.accounts.get_by_id(db, claims.account_id)
        if account is None:
            self._session_terminated(db, context, claims.account_id, "Account no longer exists")
        if not account.is_active:
            self.sessions.revoke(db, account.id)
            raise AccountInactiveError()

        access_token, access_expires_at = self.tokens.issue_access_token(account, claims.session_key)
        new_refresh, refresh_expires_at = refresh_token, claims.expires_at
        if self.rotate_refresh_tokens:
            new_refresh, refresh_expires_at = self.tokens.issue_refresh_token(account, claims.session_key)
            rotated = self.sessions.rotate(
                db,
                account_id=account.id,
                old_refresh_token=refresh_token,
                new_refresh_token=new_refresh,
                expires_at=refresh_expires_at,
            )
            if not rotated:
                # A concurrent refresh or login consumed this credential first.
                self._session_terminated(db, context, account.id, "Refresh token already rotated")

        self.ledger.log_auth_event(
            db, context, AuditAction.TOKEN_REFRESH, "success",
            account=account,
            metadata={"rotated": self.rotate_refresh_tokens},
        )
        return LoginResult(
            account=account,
            tokens=TokenPair(
                access_token=access_token,
                refresh_token=new_refresh,
                access_expires_at=access_expires_at,
                refresh_expires_at=refresh_expires_at,
            ),
        )

    def _session_terminated(self, db: Session, context: RequestContext, account_id: int, reason: str) -> None:
        account = self.accounts.get_by_id(db, account_id)
        self.ledger.log_auth_event(
            db, context, AuditAction.SESSION_TERMINATED, "failure",
            account=account,
            error_code=AuthErrorCode.SESSION_TERMINATED.value,
            error_message=reason,
        )
        raise SessionTerminatedError()

    def logout(self, db: Session, principal: AuthenticatedPrincipal, context: RequestContext) -> bool:
        revoked = self.sessions.revoke(db, principal.account_id)
        account = self.accounts.get_by_id(db, principal.account_id)
        self.ledger.log_auth_event(
            db, context, AuditAction.LOGOUT, "success",
            account=account,
            email=principal.email,
            metadata={"session_revoked": revoked},
        )
        return revoked

    def authenticate(self, db: Session, access_token: str) -> AuthenticatedPrincipal:
        """
        Gate for protected requests.

        Storage errors during the session lookup follow
        SESSION_CHECK_FAIL_POLICY instead of surfacing as server errors.
        """
        claims = self.tokens.verify_access(access_token)
        try:
            active = self.sessions.has_active_session(db, claims.account_id, claims.session_key)
        except SQLAlchemyError:
            db.rollback()
            policy = self.session_check_policy
            SESSION_CHECK_FAILURES.labels(policy.value).inc()
            logger.exception("Session check failed for account id=%s (policy=%s)", claims.account_id, policy.value)
            if policy == FailPolicy.FAIL_CLOSED:
                raise AuthUnavailableError()
            active = True

        if not active:
            raise SessionTerminatedError()
        return AuthenticatedPrincipal(
            account_id=claims.account_id,
            email=claims.email,
            role=claims.role,
            session_key=claims.session_key,
        )


auth_gateway = AuthGateway()
