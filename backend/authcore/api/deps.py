"""API dependencies - authentication and authorization"""

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional

from authcore.core.database import get_db
from authcore.core.exceptions import AccountInactiveError, AuthorizationError, SessionTerminatedError, TokenInvalidError
from authcore.models.account import Account
from authcore.services.account_service import account_service
from authcore.services.audit_ledger import RequestContext, audit_ledger
from authcore.services.auth_gateway import AuthenticatedPrincipal, auth_gateway

# HTTP Bearer token scheme; missing credentials are reported as TOKEN_INVALID
security = HTTPBearer(auto_error=False)


def get_request_context(request: Request) -> RequestContext:
    """Request metadata recorded on audit entries"""
    user_agent = request.headers.get("user-agent")
    return RequestContext(
        ip_address=request.client.host if request.client else None,
        user_agent=user_agent[:500] if user_agent else None,
        method=request.method,
        path=request.url.path,
    )


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> AuthenticatedPrincipal:
    """
    Verify the bearer access token and its session

    Args:
        credentials: HTTP Bearer credentials
        db: Database session

    Returns:
        Principal built from the token claims

    Raises:
        TokenInvalidError: If no token was sent or it does not verify
        TokenExpiredError: If the token is past its lifetime
        SessionTerminatedError: If a newer login or a logout ended the session
    """
    if credentials is None or not credentials.credentials:
        raise TokenInvalidError()
    return auth_gateway.authenticate(db, credentials.credentials)


def get_current_account(
    principal: AuthenticatedPrincipal = Depends(get_current_principal),
    db: Session = Depends(get_db)
) -> Account:
    """
    Load the account behind the principal

    Raises:
        SessionTerminatedError: If the account no longer exists
        AccountInactiveError: If the account was deactivated after login
    """
    account = account_service.get_by_id(db, principal.account_id)
    if not account:
        raise SessionTerminatedError()
    if not account.is_active:
        raise AccountInactiveError()
    return account


def get_current_admin(
    account: Account = Depends(get_current_account),
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
) -> Account:
    """
    Get current admin account (authorization check)

    Raises:
        AuthorizationError: If the account is not an admin
    """
    if account.role != "admin":
        audit_ledger.log_failed_access(db, context, "Admin access required", account=account)
        raise AuthorizationError("Admin access required")
    return account
