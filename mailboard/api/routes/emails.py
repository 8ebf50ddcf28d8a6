"""
Email listing, search, single-message reads, mark-read and batch
trash/restore endpoints.

Batch responses use the HTTP status to summarize the outcome:
200 all succeeded, 207 mixed, 500 nothing succeeded (401 if every failure
was an authentication error), 400 for invalid requests.
"""
import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from mailboard.api.auth import verify_api_key
from mailboard.api.dependencies import get_coordinator, get_manager, to_http_error
from mailboard.api.schemas import BatchOutcome, BatchRequest, BatchResponse, MarkReadResponse, MessagesResponse
from mailboard.core.accounts.multi_account import MultiAccountManager
from mailboard.core.deletion.coordinator import DeletionBatch, DeletionCoordinator
from mailboard.core.errors import MailboardError
from mailboard.core.models import TaggedMessage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/emails", tags=["emails"], dependencies=[Depends(verify_api_key)])

# Named windows accepted by ?time_range=
TIME_RANGES = {"today": 1, "week": 7, "month": 30, "year": 365}


def batch_status_code(batches: Iterable[DeletionBatch]) -> int:
    results = [batch.result for batch in batches if batch.result is not None]
    succeeded = sum(r.succeeded_count for r in results)
    failures = [f for r in results for f in r.failed]
    if not failures:
        return status.HTTP_200_OK
    if succeeded == 0:
        if all(f.error_type == "auth" for f in failures):
            return status.HTTP_401_UNAUTHORIZED
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_207_MULTI_STATUS


def _group_by_account(request: BatchRequest) -> Dict[str, List[str]]:
    grouped: Dict[str, List[str]] = {}
    for ref in request.emails:
        grouped.setdefault(ref.account_id, []).append(ref.id)
    return grouped


def _batch_response(batches: List[DeletionBatch]) -> JSONResponse:
    outcomes = [
        BatchOutcome(
            batch_id=batch.batch_id,
            account_id=batch.account_id,
            operation=batch.operation.value,
            state=batch.state.value,
            succeeded_ids=batch.result.succeeded_ids,
            failed=batch.result.failed,
        )
        for batch in batches
    ]
    succeeded = sum(len(o.succeeded_ids) for o in outcomes)
    failed = sum(len(o.failed) for o in outcomes)
    body = BatchResponse(success=failed == 0, batches=outcomes, succeeded_count=succeeded, failed_count=failed)
    return JSONResponse(status_code=batch_status_code(batches), content=body.model_dump(mode="json"))


@router.get("/recent", response_model=MessagesResponse)
async def recent_emails(
    limit: Optional[int] = Query(None, ge=1, le=200, description="Messages per account (default RECENT_DEFAULT_LIMIT)"),
    days: Optional[int] = Query(None, ge=1, le=3650),
    time_range: Optional[str] = Query(None, description="today, week, month or year"),
    manager: MultiAccountManager = Depends(get_manager),
):
    """Newest inbox messages across all connected accounts, newest first."""
    if time_range is not None:
        if time_range not in TIME_RANGES:
            raise HTTPException(status_code=400, detail=f"Unknown time_range '{time_range}'")
        days = TIME_RANGES[time_range]
    results = await manager.list_recent_across_accounts(limit=limit, days=days)
    return MessagesResponse(messages=results.messages, total=len(results.messages), errors=results.errors)


@router.get("/search", response_model=MessagesResponse)
async def search_emails(
    q: str = Query("", description="Provider query (Gmail syntax for Gmail, full text for IMAP)"),
    limit: Optional[int] = Query(None, ge=1, le=200, description="Results per account (default SEARCH_DEFAULT_LIMIT)"),
    manager: MultiAccountManager = Depends(get_manager),
):
    """Search every connected account; results are tagged with their account."""
    results = await manager.search_across_accounts(q, limit=limit)
    return MessagesResponse(messages=results.messages, total=len(results.messages), errors=results.errors)


@router.post("/batch/delete", response_model=BatchResponse)
async def batch_delete(request: BatchRequest, coordinator: DeletionCoordinator = Depends(get_coordinator)):
    """Move messages to trash. Never deletes permanently."""
    if not request.emails:
        raise HTTPException(status_code=400, detail="No emails provided")
    try:
        batches = await coordinator.trash_across_accounts(_group_by_account(request))
    except MailboardError as e:
        raise to_http_error(e)
    return _batch_response(list(batches.values()))


@router.post("/batch/restore", response_model=BatchResponse)
async def batch_restore(request: BatchRequest, coordinator: DeletionCoordinator = Depends(get_coordinator)):
    """Take previously trashed messages out of trash."""
    if not request.emails:
        raise HTTPException(status_code=400, detail="No emails provided")
    try:
        batches = await coordinator.restore_across_accounts(_group_by_account(request))
    except MailboardError as e:
        raise to_http_error(e)
    return _batch_response(list(batches.values()))


@router.post("/mark-read", response_model=MarkReadResponse)
async def mark_read(request: BatchRequest, manager: MultiAccountManager = Depends(get_manager)):
    """
    Mark messages as read, grouped by account. Accounts run concurrently and
    a failing account is reported in `errors` without affecting the others
    (200 all marked, 207 mixed, otherwise the first account's error status).
    """
    if not request.emails:
        raise HTTPException(status_code=400, detail="No emails provided")
    grouped = _group_by_account(request)

    async def mark(account_id: str, message_ids: List[str]):
        try:
            return await manager.mark_read(account_id, message_ids), None
        except MailboardError as e:
            return 0, e

    outcomes = await asyncio.gather(*(mark(a, ids) for a, ids in grouped.items()))
    marked = sum(count for count, _ in outcomes)
    errors = {a: error for a, (_, error) in zip(grouped, outcomes) if error is not None}
    if errors and marked == 0:
        raise to_http_error(next(iter(errors.values())))
    body = MarkReadResponse(
        success=not errors,
        marked_count=marked,
        errors={a: e.message for a, e in errors.items()},
    )
    code = status.HTTP_207_MULTI_STATUS if errors else status.HTTP_200_OK
    return JSONResponse(status_code=code, content=body.model_dump(mode="json"))


@router.get("/{account_id}/{message_id}", response_model=TaggedMessage)
async def get_email(
    account_id: str,
    message_id: str,
    include_body: bool = Query(False, description="Also return the plain-text body"),
    manager: MultiAccountManager = Depends(get_manager),
):
    """One message; 404 if it no longer exists, 400 for an unknown or unconnected account."""
    try:
        return await manager.get_message(account_id, message_id, include_body=include_body)
    except MailboardError as e:
        raise to_http_error(e)
