"""Custom exception classes for the application"""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class AuthErrorCode(str, Enum):
    """Closed set of authentication outcomes a caller must handle"""
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"
    ACCOUNT_UNVERIFIED = "ACCOUNT_UNVERIFIED"
    TOKEN_INVALID = "TOKEN_INVALID"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    SESSION_TERMINATED = "SESSION_TERMINATED"
    AUTH_UNAVAILABLE = "AUTH_UNAVAILABLE"


# Authentication Errors
class AuthError(BaseAPIException):
    """Base authentication error; every subclass pins one AuthErrorCode"""
    code: AuthErrorCode

    def __init__(
        self,
        message: str,
        status_code: int = 401,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, status_code=status_code, details=details)


class InvalidCredentialsError(AuthError):
    """Wrong email, wrong password or unknown account (deliberately indistinguishable)"""
    code = AuthErrorCode.INVALID_CREDENTIALS

    def __init__(self):
        super().__init__("Invalid email or password")


class AccountLockedError(AuthError):
    """Account is temporarily locked due to failed login attempts"""
    code = AuthErrorCode.ACCOUNT_LOCKED

    def __init__(self, retry_at: datetime):
        self.retry_at = retry_at
        super().__init__(
            "Account is temporarily locked. Please try again later.",
            status_code=423,
            details={"retry_at": retry_at.isoformat()}
        )


class AccountInactiveError(AuthError):
    """Password matched but the account is deactivated"""
    code = AuthErrorCode.ACCOUNT_INACTIVE

    def __init__(self):
        super().__init__("Account is deactivated", status_code=403)


class AccountUnverifiedError(AuthError):
    """Password matched but the email address is not verified"""
    code = AuthErrorCode.ACCOUNT_UNVERIFIED

    def __init__(self):
        super().__init__("Account not verified. Please verify your email first.", status_code=403)


class TokenInvalidError(AuthError):
    """JWT token is malformed, badly signed or of the wrong kind"""
    code = AuthErrorCode.TOKEN_INVALID

    def __init__(self):
        super().__init__("Authentication required")


class TokenExpiredError(AuthError):
    """JWT token has expired"""
    code = AuthErrorCode.TOKEN_EXPIRED

    def __init__(self):
        super().__init__("Token has expired")


class SessionTerminatedError(AuthError):
    """Token is valid but its session was superseded or revoked"""
    code = AuthErrorCode.SESSION_TERMINATED

    def __init__(self):
        super().__init__(
            "Your session has been terminated. You have been logged in from another device."
        )


class AuthUnavailableError(AuthError):
    """A fail-closed check could not reach its storage"""
    code = AuthErrorCode.AUTH_UNAVAILABLE

    def __init__(self):
        super().__init__(
            "Authentication is temporarily unavailable. Please try again later.",
            status_code=503
        )


# Authorization Errors
class AuthorizationError(BaseAPIException):
    """Insufficient permissions"""
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, status_code=403)


# Resource Errors
class ResourceNotFoundError(BaseAPIException):
    """Resource not found"""
    def __init__(self, resource: str):
        super().__init__(f"{resource} not found", status_code=404)


class ResourceAlreadyExistsError(BaseAPIException):
    """Resource already exists"""
    def __init__(self, resource: str):
        super().__init__(f"{resource} already exists", status_code=409)
