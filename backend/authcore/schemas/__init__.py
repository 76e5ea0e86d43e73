"""Pydantic schemas for API validation"""

from authcore.schemas.auth import (
    LoginRequest,
    RefreshRequest,
    TokenResponse,
    AccountResponse,
    LogoutResponse,
)
from authcore.schemas.audit import AuditEntryResponse, ChainVerificationResponse
from authcore.schemas.response import APIResponse, ErrorResponse, HealthResponse

__all__ = [
    "LoginRequest", "RefreshRequest", "TokenResponse", "AccountResponse", "LogoutResponse",
    "AuditEntryResponse", "ChainVerificationResponse",
    "APIResponse", "ErrorResponse", "HealthResponse",
]
