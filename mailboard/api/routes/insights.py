"""
Mailbox activity insights: messages per day and top senders per account.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from mailboard.api.auth import verify_api_key
from mailboard.api.dependencies import get_manager
from mailboard.api.routes.emails import TIME_RANGES
from mailboard.api.schemas import InsightsResponse
from mailboard.core.accounts.multi_account import MultiAccountManager

router = APIRouter(prefix="/api/insights", tags=["insights"], dependencies=[Depends(verify_api_key)])


@router.get("", response_model=InsightsResponse)
async def get_insights(
    time_range: str = Query("month", description="today, week, month or year"),
    sample_size: Optional[int] = Query(None, ge=1, le=500, description="Recent messages sampled per account"),
    manager: MultiAccountManager = Depends(get_manager),
):
    if time_range not in TIME_RANGES:
        raise HTTPException(status_code=400, detail=f"Unknown time_range '{time_range}'")
    result = await manager.get_insights(days=TIME_RANGES[time_range], sample_size=sample_size)
    return InsightsResponse(
        days=result.days,
        total_emails=result.total_emails,
        active_accounts=result.active_accounts,
        per_account=result.per_account,
    )
