"""Audit ledger response schemas."""

from datetime import datetime
from typing import Optional, Dict, Any

from pydantic import BaseModel, Field


class AuditEntryResponse(BaseModel):
    id: int
    timestamp: datetime
    account_id: Optional[int] = None
    account_email: Optional[str] = None
    account_role: Optional[str] = None
    action: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_method: Optional[str] = None
    request_path: Optional[str] = None
    status: str
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="metadata_json")
    previous_hash: str
    content_hash: str

    class Config:
        from_attributes = True


class ChainVerificationResponse(BaseModel):
    ok: bool
    checked: int
    broken_at: Optional[int] = None
    reason: Optional[str] = None
