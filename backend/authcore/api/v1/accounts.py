"""Account administration routes"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from authcore.api.deps import get_current_admin, get_request_context
from authcore.core.database import get_db
from authcore.models.account import Account
from authcore.schemas.response import APIResponse
from authcore.services.account_service import account_service
from authcore.services.audit_ledger import RequestContext

router = APIRouter()


@router.delete("/{account_id}", response_model=APIResponse, status_code=status.HTTP_200_OK)
def delete_account(
    account_id: int,
    admin: Account = Depends(get_current_admin),
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """
    Delete an account

    Its audit entries stay in the ledger with ``account_id`` cleared and
    the email and role they were recorded with.

    Args:
        account_id: Account to delete
        admin: Current admin account
    """
    account_service.delete_account(db, account_id, actor=admin, context=context)
    return APIResponse(message="Account deleted successfully", data={"account_id": account_id})
