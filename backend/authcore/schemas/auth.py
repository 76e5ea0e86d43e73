"""Authentication schemas"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime


class LoginRequest(BaseModel):
    """Login credentials"""
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        """Trim and lower-case the email"""
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Email must contain '@'")
        return v


class RefreshRequest(BaseModel):
    """Refresh request; the token may also arrive in the refresh cookie"""
    refreshToken: Optional[str] = None


class AccountResponse(BaseModel):
    """Account response schema"""
    id: int
    email: str
    role: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: bool
    is_verified: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    """Token pair returned by login and refresh"""
    accessToken: str
    refreshToken: str
    tokenType: str = "bearer"
    expiresIn: int
    user: AccountResponse


class LogoutResponse(BaseModel):
    success: bool = True
    message: str = "Logged out successfully"
    sessionRevoked: bool
