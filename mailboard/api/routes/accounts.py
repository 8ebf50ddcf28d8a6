"""
Account status endpoints.
"""
import logging

from fastapi import APIRouter, Depends

from mailboard.api.auth import verify_api_key
from mailboard.api.dependencies import get_manager, to_http_error
from mailboard.api.schemas import AccountsResponse, InitializeResponse
from mailboard.core.accounts.multi_account import MultiAccountManager
from mailboard.core.errors import MailboardError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/accounts", tags=["accounts"], dependencies=[Depends(verify_api_key)])


@router.get("", response_model=AccountsResponse)
async def list_accounts(manager: MultiAccountManager = Depends(get_manager)):
    """Every configured account with its connection status and last error."""
    summaries = manager.get_account_summary()
    return AccountsResponse(accounts=summaries, total=len(summaries))


@router.post("/initialize", response_model=InitializeResponse)
async def initialize_accounts(manager: MultiAccountManager = Depends(get_manager)):
    """(Re)connect enabled accounts; already connected accounts are left as they are."""
    results = await manager.initialize_all_accounts()
    connected = sum(1 for r in results.values() if r.ok)
    return InitializeResponse(results=results, connected=connected, failed=len(results) - connected)


@router.post("/{account_id}/disconnect", response_model=AccountsResponse)
async def disconnect_account(account_id: str, manager: MultiAccountManager = Depends(get_manager)):
    try:
        await manager.disconnect_account(account_id)
    except MailboardError as e:
        raise to_http_error(e)
    summaries = manager.get_account_summary()
    return AccountsResponse(accounts=summaries, total=len(summaries))
