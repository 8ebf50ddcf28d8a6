"""
Deletion audit log.

Every trash/restore batch that reaches a terminal state is appended here.
Entries are kept in memory, emitted as JSON on the `mailboard.audit` logger
and, when a path is configured, appended to a JSON-lines file. Entries are
never modified or removed.
"""
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from mailboard.core.models import utcnow

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("mailboard.audit")


class AuditLogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utcnow)
    batch_id: str
    account_id: str
    operation: str
    message_ids: Tuple[str, ...]
    outcome: str
    succeeded_count: int = 0
    failed_count: int = 0


class AuditLog:
    """Append-only record of deletion batches."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path).expanduser() if path else None
        self._entries: List[AuditLogEntry] = []
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._entries.extend(self._read_file(self.path))

    @staticmethod
    def _read_file(path: Path) -> List[AuditLogEntry]:
        if not path.exists():
            return []
        entries = []
        with open(path, "r") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(AuditLogEntry.model_validate_json(line))
                except ValueError as e:
                    logger.warning(f"Skipping unreadable audit line {line_no} in {path}: {e}")
        return entries

    def append(self, entry: AuditLogEntry) -> AuditLogEntry:
        self._entries.append(entry)
        payload = entry.model_dump_json()
        audit_logger.info(payload)
        if self.path is not None:
            with open(self.path, "a") as f:
                f.write(payload + "\n")
        return entry

    def entries(self, account_id: Optional[str] = None) -> Tuple[AuditLogEntry, ...]:
        """Snapshot of the log, oldest first, optionally for one account."""
        if account_id is None:
            return tuple(self._entries)
        return tuple(e for e in self._entries if e.account_id == account_id)

    def __len__(self) -> int:
        return len(self._entries)

    def summary(self) -> dict:
        """Counts per operation/outcome, for dashboards."""
        counts: dict = {}
        for entry in self._entries:
            key = f"{entry.operation}:{entry.outcome}"
            counts[key] = counts.get(key, 0) + 1
        return {"entries": len(self._entries), "by_outcome": counts}


def dump_entry(entry: AuditLogEntry) -> str:
    """Human-friendly single-line rendering (CLI output)."""
    return json.dumps({
        "timestamp": entry.timestamp.isoformat(),
        "account": entry.account_id,
        "operation": entry.operation,
        "outcome": entry.outcome,
        "messages": len(entry.message_ids),
        "failed": entry.failed_count,
    })
