"""
Shared data models for accounts, messages and deletion outcomes.

Pydantic models are used throughout so the same objects can be returned
from the core and serialized by the API without a second schema layer.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProviderType(str, Enum):
    """Supported mail backends."""
    GMAIL = "gmail"
    YAHOO_IMAP = "yahoo_imap"
    AOL_IMAP = "aol_imap"


# Default IMAP endpoints per provider (overridable per account)
IMAP_PROVIDER_DEFAULTS: Dict[ProviderType, Dict[str, object]] = {
    ProviderType.YAHOO_IMAP: {"host": "imap.mail.yahoo.com", "port": 993, "trash_folder": "Trash"},
    ProviderType.AOL_IMAP: {"host": "imap.aol.com", "port": 993, "trash_folder": "Trash"},
}


class Account(BaseModel):
    """A configured mailbox. Immutable once loaded; identity is `id`."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    provider: ProviderType
    credentials_ref: str
    enabled: bool = True

    # IMAP-only overrides
    imap_host: Optional[str] = None
    imap_port: Optional[int] = None
    folder: str = "INBOX"
    trash_folder: Optional[str] = None

    @property
    def is_imap(self) -> bool:
        return self.provider in IMAP_PROVIDER_DEFAULTS


class AccountStatus(str, Enum):
    PENDING = "pending"
    CONNECTED = "connected"
    FAILED = "failed"
    DISABLED = "disabled"


class ConnectionResult(BaseModel):
    """Outcome of connecting one account."""
    ok: bool
    error: Optional[str] = None
    error_type: Optional[str] = None


class AccountSummary(BaseModel):
    account_id: str
    name: str
    email: str
    provider: ProviderType
    status: AccountStatus
    last_error: Optional[str] = None


class MessageSummary(BaseModel):
    """Provider-neutral view of a message, as returned by search/list."""
    id: str
    sender: str = Field("", alias="from")
    subject: str = ""
    date: Optional[datetime] = None
    snippet: str = ""
    is_unread: bool = False
    # Only filled by get_message(include_body=True)
    body: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class TaggedMessage(MessageSummary):
    """A MessageSummary tagged with the account it came from."""
    account_id: str
    account_name: str
    provider: ProviderType


class AccountUnreadCount(BaseModel):
    account: str
    count: Optional[int] = None
    error: Optional[str] = None


class UnreadCountResult(BaseModel):
    per_account: Dict[str, AccountUnreadCount] = Field(default_factory=dict)
    total: int = 0

    @property
    def failed_accounts(self) -> List[str]:
        return [account_id for account_id, entry in self.per_account.items() if entry.count is None]


class MailboxStats(BaseModel):
    """Size of one mailbox: all messages, unread, and received in the last `days` days."""
    total_messages: int = 0
    unread_messages: int = 0
    recent_messages: int = 0
    days: int = 7


class AccountMailboxStats(BaseModel):
    account: str
    stats: Optional[MailboxStats] = None
    error: Optional[str] = None


class MailboxStatsResult(BaseModel):
    per_account: Dict[str, AccountMailboxStats] = Field(default_factory=dict)
    total_messages: int = 0
    unread_messages: int = 0
    recent_messages: int = 0
    days: int = 7

    @property
    def failed_accounts(self) -> List[str]:
        return [account_id for account_id, entry in self.per_account.items() if entry.stats is None]


class SenderCount(BaseModel):
    sender: str
    count: int


class EmailActivity(BaseModel):
    by_day: Dict[str, int] = Field(default_factory=dict)
    total_volume: int = 0
    average_per_day: int = 0


class AccountInsights(BaseModel):
    account: str
    total_emails: int = 0
    unread_emails: int = 0
    activity: Optional[EmailActivity] = None
    top_senders: List[SenderCount] = Field(default_factory=list)
    error: Optional[str] = None


class InsightsResult(BaseModel):
    per_account: Dict[str, AccountInsights] = Field(default_factory=dict)
    total_emails: int = 0
    active_accounts: int = 0
    days: int = 30


class SearchResults(BaseModel):
    """Merged results of a fan-out search or recent-mail listing."""
    messages: List[TaggedMessage] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)


class FailedMessage(BaseModel):
    id: str
    error_reason: str
    error_type: str = "provider"


class DeletionResult(BaseModel):
    """
    Outcome of a trash or restore call.

    `succeeded_ids` behaves as a set (no duplicates) but keeps the order in
    which messages were processed.
    """
    succeeded_ids: List[str] = Field(default_factory=list)
    failed: List[FailedMessage] = Field(default_factory=list)

    def record_success(self, message_id: str) -> None:
        if message_id not in self.succeeded_ids:
            self.succeeded_ids.append(message_id)

    def record_failure(self, message_id: str, reason: str, error_type: str = "provider") -> None:
        self.failed.append(FailedMessage(id=message_id, error_reason=reason, error_type=error_type))

    def merge(self, other: "DeletionResult") -> None:
        for message_id in other.succeeded_ids:
            self.record_success(message_id)
        self.failed.extend(other.failed)

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded_ids)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    @property
    def all_failed(self) -> bool:
        return bool(self.failed) and not self.succeeded_ids


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
