"""
Unread and mailbox statistics across accounts.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from mailboard.api.auth import verify_api_key
from mailboard.api.dependencies import get_manager
from mailboard.api.schemas import MailboxStatsResponse, UnreadStatsResponse
from mailboard.core.accounts.multi_account import MultiAccountManager

router = APIRouter(prefix="/api/stats", tags=["stats"], dependencies=[Depends(verify_api_key)])


@router.get("", response_model=UnreadStatsResponse)
@router.get("/unread", response_model=UnreadStatsResponse)
async def get_unread_stats(manager: MultiAccountManager = Depends(get_manager)):
    """
    Unread counts per connected account.

    A failing account is reported with count=None and its error; the total
    only sums accounts that answered.
    """
    counts = await manager.get_unread_counts()
    return UnreadStatsResponse(
        total_unread=counts.total,
        per_account=counts.per_account,
        failed_accounts=counts.failed_accounts,
    )


@router.get("/mailbox", response_model=MailboxStatsResponse)
async def get_mailbox_stats(
    days: Optional[int] = Query(None, ge=1, le=3650, description="Recent window (default STATS_RECENT_DAYS)"),
    manager: MultiAccountManager = Depends(get_manager),
):
    """Total, unread and recently received messages per account and overall."""
    result = await manager.get_mailbox_stats(days)
    return MailboxStatsResponse(
        total_messages=result.total_messages,
        unread_messages=result.unread_messages,
        recent_messages=result.recent_messages,
        days=result.days,
        per_account=result.per_account,
        failed_accounts=result.failed_accounts,
    )
