"""
Deletion Module

Recoverable bulk trash/restore with an append-only audit log.
"""
from mailboard.core.deletion.audit import AuditLog, AuditLogEntry
from mailboard.core.deletion.coordinator import BatchState, DeletionBatch, DeletionCoordinator, DeletionOperation

__all__ = [
    "AuditLog",
    "AuditLogEntry",
    "BatchState",
    "DeletionBatch",
    "DeletionCoordinator",
    "DeletionOperation",
]
