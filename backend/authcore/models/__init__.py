"""Database models"""

from authcore.models.account import Account
from authcore.models.session import AuthSession
from authcore.models.audit import AuditLog

__all__ = ["Account", "AuthSession", "AuditLog"]
