"""Authentication routes"""

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session
from typing import Optional

from authcore.api.deps import get_current_account, get_current_principal, get_request_context
from authcore.config import settings
from authcore.core.database import get_db
from authcore.core.exceptions import TokenInvalidError
from authcore.models.account import Account
from authcore.schemas.auth import (
    AccountResponse,
    LoginRequest,
    LogoutResponse,
    RefreshRequest,
    TokenResponse,
)
from authcore.services.audit_ledger import RequestContext
from authcore.services.auth_gateway import AuthenticatedPrincipal, LoginResult, auth_gateway

router = APIRouter()


def _set_refresh_cookie(response: Response, refresh_token: str) -> None:
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=refresh_token,
        max_age=int(settings.REFRESH_TOKEN_TTL.total_seconds()),
        path="/",
        domain=settings.COOKIE_DOMAIN,
        secure=not settings.is_development,
        httponly=True,
        samesite="strict",
    )


def _token_response(result: LoginResult) -> TokenResponse:
    return TokenResponse(
        accessToken=result.tokens.access_token,
        refreshToken=result.tokens.refresh_token,
        tokenType="bearer",
        expiresIn=int(settings.ACCESS_TOKEN_TTL.total_seconds()),
        user=AccountResponse.model_validate(result.account),
    )


@router.post("/login", response_model=TokenResponse, status_code=status.HTTP_200_OK)
def login(
    credentials: LoginRequest,
    response: Response,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """
    Login endpoint - authenticate and start the account's only session

    Any session the account already had is terminated.

    Args:
        credentials: Email and password
        db: Database session

    Returns:
        Access and refresh tokens plus account info
    """
    result = auth_gateway.login(db, credentials.email, credentials.password, context)
    _set_refresh_cookie(response, result.tokens.refresh_token)
    return _token_response(result)


@router.post("/refresh", response_model=TokenResponse)
def refresh_token(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = None,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """
    Exchange a refresh token for a new access token

    The token is read from the body, falling back to the refresh cookie.
    """
    token = (body.refreshToken if body else None) or request.cookies.get(settings.REFRESH_COOKIE_NAME)
    if not token:
        raise TokenInvalidError()

    result = auth_gateway.refresh(db, token, context)
    _set_refresh_cookie(response, result.tokens.refresh_token)
    return _token_response(result)


@router.post("/logout", response_model=LogoutResponse)
def logout(
    response: Response,
    principal: AuthenticatedPrincipal = Depends(get_current_principal),
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Revoke the current session and clear the refresh cookie"""
    revoked = auth_gateway.logout(db, principal, context)
    response.delete_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        path="/",
        domain=settings.COOKIE_DOMAIN,
        secure=not settings.is_development,
        httponly=True,
        samesite="strict",
    )
    return LogoutResponse(sessionRevoked=revoked)


@router.get("/me", response_model=AccountResponse)
def get_current_account_info(
    current_account: Account = Depends(get_current_account)
):
    """Get current account information"""
    return AccountResponse.model_validate(current_account)
