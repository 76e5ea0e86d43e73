"""Audit ledger routes (admin only)"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from authcore.api.deps import get_current_admin
from authcore.core.database import get_db
from authcore.models.account import Account
from authcore.schemas.audit import AuditEntryResponse, ChainVerificationResponse
from authcore.services.audit_ledger import audit_ledger

router = APIRouter()


@router.get("", response_model=List[AuditEntryResponse])
def list_audit_entries(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    action: Optional[str] = Query(None, max_length=100),
    account_id: Optional[int] = Query(None, ge=1),
    admin: Account = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """
    List audit entries, newest first

    Args:
        limit: Page size
        offset: Rows to skip
        action: Only entries with this action
        account_id: Only entries attributed to this account
    """
    entries = audit_ledger.list_entries(
        db, limit=limit, offset=offset, action=action, account_id=account_id
    )
    return [AuditEntryResponse.model_validate(entry) for entry in entries]


@router.get("/verify", response_model=ChainVerificationResponse)
def verify_audit_chain(
    admin: Account = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Recompute the hash chain from genesis and report the first break"""
    result = audit_ledger.verify_chain(db)
    return ChainVerificationResponse(
        ok=result.ok,
        checked=result.checked,
        broken_at=result.broken_at,
        reason=result.reason,
    )
