"""
Deletion Coordinator - safe bulk trash with audit trail

Each request becomes a DeletionBatch that moves through

    PENDING -> IN_PROGRESS -> COMPLETED | PARTIALLY_FAILED

Validation happens while PENDING (empty id list, unknown or unconnected
account) and rejects the batch with ValidationError before any backend call.
The connector call runs under the account's lock, so overlapping batches on
one account execute one after another. Failures are not retried; they are
recorded per message and the batch is audited once it reaches a terminal
state.
"""
import asyncio
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence

from mailboard.core.accounts.multi_account import MultiAccountManager
from mailboard.core.config import get_settings
from mailboard.core.deletion.audit import AuditLog, AuditLogEntry
from mailboard.core.errors import MailboardError, ValidationError
from mailboard.core.models import DeletionResult, utcnow

logger = logging.getLogger(__name__)


class BatchState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"


class DeletionOperation(str, Enum):
    TRASH = "trash"
    RESTORE = "restore"


@dataclass
class DeletionBatch:
    account_id: str
    message_ids: List[str]
    operation: DeletionOperation = DeletionOperation.TRASH
    batch_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: BatchState = BatchState.PENDING
    result: Optional[DeletionResult] = None
    created_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (BatchState.COMPLETED, BatchState.PARTIALLY_FAILED)


class DeletionCoordinator:
    """
    Runs trash/restore batches against the MultiAccountManager's connectors.

    Usage:
        coordinator = DeletionCoordinator(manager, AuditLog(path))
        batch = await coordinator.trash("yahoo", ["101", "102"])
        batch.state, batch.result.failed
    """

    def __init__(self, manager: MultiAccountManager, audit_log: Optional[AuditLog] = None,
                 max_batches: Optional[int] = None):
        self.manager = manager
        # An empty AuditLog is falsy (it defines __len__), so test against None
        self.audit_log = audit_log if audit_log is not None else AuditLog()
        self.max_batches = max(max_batches if max_batches is not None else get_settings().batch_history_size, 1)
        # Oldest first; only the newest max_batches are kept for get_batch
        self._batches: "OrderedDict[str, DeletionBatch]" = OrderedDict()

    def get_batch(self, batch_id: str) -> Optional[DeletionBatch]:
        return self._batches.get(batch_id)

    def _remember(self, batch: DeletionBatch):
        self._batches[batch.batch_id] = batch
        while len(self._batches) > self.max_batches:
            self._batches.popitem(last=False)

    def _validate(self, account_id: str, message_ids: Sequence[str]) -> List[str]:
        ids = [str(m) for m in dict.fromkeys(message_ids or []) if str(m).strip()]
        if not ids:
            raise ValidationError("No message ids supplied", account_id=account_id)
        # Raises ValidationError for unknown or unconnected accounts
        self.manager.get_connector(account_id)
        return ids

    async def trash(self, account_id: str, message_ids: Sequence[str]) -> DeletionBatch:
        """Move messages of one account to trash."""
        return await self._run(account_id, message_ids, DeletionOperation.TRASH)

    async def restore(self, account_id: str, message_ids: Sequence[str]) -> DeletionBatch:
        """Take previously trashed messages of one account out of trash."""
        return await self._run(account_id, message_ids, DeletionOperation.RESTORE)

    async def trash_across_accounts(self, requests: Mapping[str, Sequence[str]]) -> Dict[str, DeletionBatch]:
        """
        Trash messages grouped by account; accounts are processed concurrently.

        Every account is validated before anything is dispatched, so one bad
        account id rejects the whole request.
        """
        return await self._run_across(requests, DeletionOperation.TRASH)

    async def restore_across_accounts(self, requests: Mapping[str, Sequence[str]]) -> Dict[str, DeletionBatch]:
        return await self._run_across(requests, DeletionOperation.RESTORE)

    async def _run_across(self, requests: Mapping[str, Sequence[str]],
                          operation: DeletionOperation) -> Dict[str, DeletionBatch]:
        if not requests:
            raise ValidationError("No message ids supplied")
        for account_id, message_ids in requests.items():
            self._validate(account_id, message_ids)

        account_ids = list(requests.keys())
        batches = await asyncio.gather(*(self._run(a, requests[a], operation) for a in account_ids))
        return dict(zip(account_ids, batches))

    async def _run(self, account_id: str, message_ids: Sequence[str],
                   operation: DeletionOperation) -> DeletionBatch:
        ids = self._validate(account_id, message_ids)
        batch = DeletionBatch(account_id=account_id, message_ids=ids, operation=operation)
        self._remember(batch)

        batch.state = BatchState.IN_PROGRESS
        logger.info(f"Batch {batch.batch_id}: {operation.value} {len(ids)} message(s) in {account_id}")

        try:
            if operation == DeletionOperation.TRASH:
                result = await self.manager.run_exclusive(account_id, lambda c: c.batch_trash(ids))
            else:
                result = await self.manager.run_exclusive(account_id, lambda c: c.restore(ids))
        except MailboardError as e:
            logger.error(f"Batch {batch.batch_id} failed for {account_id}: {e.message}")
            result = DeletionResult()
            for message_id in ids:
                result.record_failure(message_id, e.message, e.error_type)

        self._finish(batch, result)
        return batch

    def _finish(self, batch: DeletionBatch, result: DeletionResult):
        batch.result = result
        batch.state = BatchState.COMPLETED if result.all_succeeded else BatchState.PARTIALLY_FAILED
        batch.finished_at = utcnow()

        self.audit_log.append(AuditLogEntry(
            timestamp=batch.finished_at,
            batch_id=batch.batch_id,
            account_id=batch.account_id,
            operation=batch.operation.value,
            message_ids=tuple(batch.message_ids),
            outcome=batch.state.value,
            succeeded_count=result.succeeded_count,
            failed_count=result.failed_count,
        ))

        log = logger.info if batch.state == BatchState.COMPLETED else logger.warning
        log(
            f"Batch {batch.batch_id} {batch.state.value}: "
            f"{result.succeeded_count} succeeded, {result.failed_count} failed"
        )
