"""
Request/response schemas for the dashboard API.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from mailboard.core.models import (
    AccountInsights,
    AccountMailboxStats,
    AccountSummary,
    AccountUnreadCount,
    ConnectionResult,
    FailedMessage,
    TaggedMessage,
)


class HealthResponse(BaseModel):
    status: str
    accounts_configured: int
    accounts_connected: int


class AccountsResponse(BaseModel):
    accounts: List[AccountSummary]
    total: int


class InitializeResponse(BaseModel):
    results: Dict[str, ConnectionResult]
    connected: int
    failed: int


class UnreadStatsResponse(BaseModel):
    """Unread counts; accounts whose count failed have count=None and an error."""
    total_unread: int
    per_account: Dict[str, AccountUnreadCount]
    failed_accounts: List[str] = Field(default_factory=list)


class MessagesResponse(BaseModel):
    messages: List[TaggedMessage]
    total: int
    errors: Dict[str, str] = Field(default_factory=dict)


class MailboxStatsResponse(BaseModel):
    """Mailbox totals; accounts whose stats failed have stats=None and an error."""
    total_messages: int
    unread_messages: int
    recent_messages: int
    days: int
    per_account: Dict[str, AccountMailboxStats]
    failed_accounts: List[str] = Field(default_factory=list)


class InsightsResponse(BaseModel):
    days: int
    total_emails: int
    active_accounts: int
    per_account: Dict[str, AccountInsights]


class EmailRef(BaseModel):
    account_id: str
    id: str


class BatchRequest(BaseModel):
    """Messages to trash/restore, possibly spanning several accounts."""
    emails: List[EmailRef] = Field(default_factory=list)


class BatchOutcome(BaseModel):
    batch_id: str
    account_id: str
    operation: str
    state: str
    succeeded_ids: List[str]
    failed: List[FailedMessage]


class BatchResponse(BaseModel):
    success: bool
    batches: List[BatchOutcome]
    succeeded_count: int
    failed_count: int


class MarkReadResponse(BaseModel):
    success: bool
    marked_count: int
    errors: Dict[str, str] = Field(default_factory=dict)


class AuditEntryResponse(BaseModel):
    timestamp: datetime
    batch_id: str
    account_id: str
    operation: str
    message_ids: List[str]
    outcome: str
    succeeded_count: int
    failed_count: int


class AuditResponse(BaseModel):
    entries: List[AuditEntryResponse]
    total: int
    account_id: Optional[str] = None
