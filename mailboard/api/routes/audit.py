"""
Read-only view of the deletion audit log.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from mailboard.api.auth import verify_api_key
from mailboard.api.dependencies import get_coordinator
from mailboard.api.schemas import AuditEntryResponse, AuditResponse
from mailboard.core.deletion.coordinator import DeletionCoordinator

router = APIRouter(prefix="/api/audit", tags=["audit"], dependencies=[Depends(verify_api_key)])


@router.get("", response_model=AuditResponse)
async def get_audit_log(
    account_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000, description="Most recent entries to return"),
    coordinator: DeletionCoordinator = Depends(get_coordinator),
):
    entries = coordinator.audit_log.entries(account_id)[-limit:]
    return AuditResponse(
        entries=[AuditEntryResponse(**entry.model_dump()) for entry in entries],
        total=len(entries),
        account_id=account_id,
    )
