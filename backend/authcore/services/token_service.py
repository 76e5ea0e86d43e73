"""Stateless issuance and verification of access and refresh credentials."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from authcore.config import settings
from authcore.core.clock import utcnow
from authcore.core.exceptions import TokenExpiredError, TokenInvalidError

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime


@dataclass(frozen=True)
class TokenClaims:
    account_id: int
    session_key: str
    token_type: str
    expires_at: datetime
    jti: str
    email: Optional[str] = None
    role: Optional[str] = None


class TokenService:
    """
    Mint and check signed credentials.

    Access and refresh tokens are signed with different secrets and carry a
    ``typ`` claim, so neither kind can be replayed as the other. No I/O.
    """

    def __init__(
        self,
        access_secret: Optional[str] = None,
        refresh_secret: Optional[str] = None,
        access_ttl: Optional[timedelta] = None,
        refresh_ttl: Optional[timedelta] = None,
        algorithm: Optional[str] = None,
    ) -> None:
        self.access_secret = access_secret or settings.ACCESS_TOKEN_SECRET
        self.refresh_secret = refresh_secret or settings.REFRESH_TOKEN_SECRET
        if self.access_secret == self.refresh_secret:
            raise ValueError("Access and refresh tokens must use different signing secrets")
        self.access_ttl = access_ttl if access_ttl is not None else settings.ACCESS_TOKEN_TTL
        self.refresh_ttl = refresh_ttl if refresh_ttl is not None else settings.REFRESH_TOKEN_TTL
        self.algorithm = algorithm or settings.JWT_ALGORITHM

    def _encode(self, claims: Dict[str, Any], secret: str, ttl: timedelta) -> tuple[str, datetime]:
        now = utcnow()
        expires_at = now + ttl
        to_encode = dict(claims)
        to_encode.update({
            "iat": now,
            "exp": expires_at,
            "jti": secrets.token_urlsafe(16),
        })
        return jwt.encode(to_encode, secret, algorithm=self.algorithm), expires_at

    def issue_access_token(self, account, session_key: str) -> tuple[str, datetime]:
        return self._encode(
            {
                "sub": str(account.id),
                "email": account.email,
                "role": account.role,
                "sid": session_key,
                "typ": ACCESS,
            },
            self.access_secret,
            self.access_ttl,
        )

    def issue_refresh_token(self, account, session_key: str) -> tuple[str, datetime]:
        return self._encode(
            {"sub": str(account.id), "sid": session_key, "typ": REFRESH},
            self.refresh_secret,
            self.refresh_ttl,
        )

    def issue_pair(self, account, session_key: str) -> TokenPair:
        access_token, access_exp = self.issue_access_token(account, session_key)
        refresh_token, refresh_exp = self.issue_refresh_token(account, session_key)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires_at=access_exp,
            refresh_expires_at=refresh_exp,
        )

    def _decode(self, token: str, secret: str, expected_type: str) -> TokenClaims:
        if not token:
            raise TokenInvalidError()
        try:
            payload = jwt.decode(token, secret, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise TokenExpiredError()
        except JWTError:
            raise TokenInvalidError()

        if payload.get("typ") != expected_type:
            raise TokenInvalidError()
        try:
            account_id = int(payload["sub"])
            session_key = str(payload["sid"])
            expires_at = datetime.fromtimestamp(int(payload["exp"]), timezone.utc).replace(tzinfo=None)
            jti = str(payload["jti"])
        except (KeyError, TypeError, ValueError):
            raise TokenInvalidError()

        return TokenClaims(
            account_id=account_id,
            session_key=session_key,
            token_type=expected_type,
            expires_at=expires_at,
            jti=jti,
            email=payload.get("email"),
            role=payload.get("role"),
        )

    def verify_access(self, token: str) -> TokenClaims:
        return self._decode(token, self.access_secret, ACCESS)

    def verify_refresh(self, token: str) -> TokenClaims:
        return self._decode(token, self.refresh_secret, REFRESH)


token_service = TokenService()
