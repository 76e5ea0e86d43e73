"""Account model"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Index, CheckConstraint
from sqlalchemy.sql import func
from authcore.core.database import Base


class Account(Base):
    """Account model for authentication and authorization"""

    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(50), default="staff", nullable=False)
    first_name = Column(String(100))
    last_name = Column(String(100))
    is_active = Column(Boolean, default=True, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    locked_until = Column(DateTime(timezone=True))
    last_login_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('idx_accounts_email', 'email'),
        Index('idx_accounts_role', 'role'),
        CheckConstraint('failed_login_attempts >= 0', name='chk_failed_login_attempts'),
    )

    def __repr__(self):
        return f"<Account(id={self.id}, email='{self.email}', role='{self.role}')>"
