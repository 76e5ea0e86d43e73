"""Session record: the one currently-authorized refresh credential per account."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func

from authcore.core.database import Base


class AuthSession(Base):
    """Single row per account; replaced wholesale on every successful login."""

    __tablename__ = "auth_sessions"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(
        Integer,
        ForeignKey("accounts.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    session_key = Column(String(64), unique=True, nullable=False, index=True)
    token_hash = Column(String(64), nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)

    def __repr__(self):
        return f"<AuthSession(account_id={self.account_id}, revoked={self.revoked})>"
