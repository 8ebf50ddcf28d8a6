"""
Provider Connector - common interface for mail backends

Every backend (Gmail REST API, IMAP for Yahoo/AOL) implements the same
capabilities: connect, unread count, lazy search, recent listing, single
message reads, mark-read, mailbox stats and recoverable trash/restore. The mail libraries are blocking, so each library
call is run in a worker thread via `asyncio.to_thread`, paced by a
per-connector RateLimiter and translated into the mailboard error taxonomy.

Deletion is always recoverable: connectors move messages to trash and never
issue permanent-delete/expunge commands.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Sequence

from mailboard.core.errors import MailboardError, ProviderError
from mailboard.core.models import Account, DeletionResult, MailboxStats, MessageSummary
from mailboard.core.throttling import RateLimiter

logger = logging.getLogger(__name__)


class ProviderConnector(ABC):
    """Abstract session against one account's mail backend."""

    def __init__(self,
                 account: Account,
                 secret: str,
                 *,
                 requests_per_second: Optional[float] = None,
                 fallback_delay: float = 0.1,
                 bulk_min_size: int = 2,
                 bulk_max_size: int = 1000):
        self.account = account
        self._secret = secret
        self.rate_limiter = RateLimiter(requests_per_second)
        self.fallback_delay = fallback_delay
        self.bulk_min_size = max(bulk_min_size, 2)
        self.bulk_max_size = max(bulk_max_size, 1)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(account={self.account.id!r})"

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        ...

    async def connect(self):
        """
        Establish the session. Calling connect on a connected connector is a no-op.

        Raises:
            AuthError: Invalid/expired credentials
            NetworkError: Transport failure
        """
        if self.is_connected:
            return
        await self._connect()
        logger.info(f"Connected {self.account.id} ({self.account.provider.value})")

    async def disconnect(self):
        if not self.is_connected:
            return
        await self._disconnect()
        logger.info(f"Disconnected {self.account.id}")

    @abstractmethod
    async def _connect(self):
        ...

    @abstractmethod
    async def _disconnect(self):
        ...

    # ------------------------------------------------------------------
    # Read capabilities
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_unread_count(self) -> int:
        """Unread messages in the account's inbox."""

    @abstractmethod
    def search(self, query: str, limit: int) -> AsyncIterator[MessageSummary]:
        """
        Lazily yield up to `limit` messages matching `query`, in the
        backend's native order. The iterator is single-use.
        """

    @abstractmethod
    async def list_recent(self, limit: int, days: Optional[int] = None) -> List[MessageSummary]:
        """Newest inbox messages, optionally restricted to the last `days` days."""

    @abstractmethod
    async def get_message(self, message_id: str, include_body: bool = False) -> MessageSummary:
        """
        One message by id, optionally with its plain-text body.

        Raises:
            MessageNotFoundError: The id does not exist in the mailbox
        """

    @abstractmethod
    async def mark_read(self, message_ids: Sequence[str]):
        """Clear the unread state of messages. Raises on failure."""

    @abstractmethod
    async def get_mailbox_stats(self, days: int = 7) -> MailboxStats:
        """Total, unread and recently received message counts."""

    # ------------------------------------------------------------------
    # Recoverable deletion
    # ------------------------------------------------------------------

    @abstractmethod
    async def trash(self, message_id: str):
        """Move one message to trash. Raises on failure."""

    @abstractmethod
    async def _bulk_trash(self, message_ids: List[str]):
        """Move a chunk of messages to trash in one backend call. Raises on failure."""

    @abstractmethod
    async def _restore_one(self, message_id: str):
        """Take one message out of trash. Raises on failure."""

    @abstractmethod
    async def _bulk_restore(self, message_ids: List[str]):
        """Take a chunk of messages out of trash in one backend call. Raises on failure."""

    async def batch_trash(self, message_ids: Sequence[str]) -> DeletionResult:
        """
        Trash many messages, preferring the backend's bulk mutation.

        A failed bulk call falls back to one `trash` call per message, spaced
        by `fallback_delay` seconds. Per-message failures are reported in the
        result instead of raised.
        """
        self._require_connection()
        return await self._apply_in_bulk(message_ids, self._bulk_trash, self.trash, "trash")

    async def restore(self, message_ids: Sequence[str]) -> DeletionResult:
        """Return trashed messages to where they were before `trash`."""
        self._require_connection()
        return await self._apply_in_bulk(message_ids, self._bulk_restore, self._restore_one, "restore")

    async def _apply_in_bulk(self,
                             message_ids: Sequence[str],
                             bulk_operation: Callable[[List[str]], Awaitable[Any]],
                             single_operation: Callable[[str], Awaitable[Any]],
                             action: str) -> DeletionResult:
        result = DeletionResult()
        ids = list(dict.fromkeys(message_ids))
        if not ids:
            return result

        if len(ids) < self.bulk_min_size:
            await self._apply_one_by_one(ids, single_operation, action, result)
            return result

        for start in range(0, len(ids), self.bulk_max_size):
            chunk = ids[start:start + self.bulk_max_size]
            try:
                await bulk_operation(chunk)
            except MailboardError as e:
                logger.warning(
                    f"Bulk {action} of {len(chunk)} message(s) failed for {self.account.id}: {e}; "
                    f"falling back to single-message calls"
                )
                await self._apply_one_by_one(chunk, single_operation, action, result)
            else:
                for message_id in chunk:
                    result.record_success(message_id)

        logger.info(
            f"{action} on {self.account.id}: {result.succeeded_count} succeeded, "
            f"{result.failed_count} failed"
        )
        return result

    async def _apply_one_by_one(self,
                                ids: List[str],
                                operation: Callable[[str], Awaitable[Any]],
                                action: str,
                                result: DeletionResult):
        for index, message_id in enumerate(ids):
            if index > 0 and self.fallback_delay > 0:
                await asyncio.sleep(self.fallback_delay)
            try:
                await operation(message_id)
            except MailboardError as e:
                logger.error(f"Failed to {action} {message_id} in {self.account.id}: {e.message}")
                result.record_failure(message_id, e.message, e.error_type)
            else:
                result.record_success(message_id)

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def _require_connection(self):
        if not self.is_connected:
            raise ProviderError("Connector is not connected", account_id=self.account.id)

    @abstractmethod
    def _translate_error(self, error: Exception) -> MailboardError:
        """Map a library exception to AuthError/NetworkError/ProviderError."""

    async def _call(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        """Run a blocking library call off the event loop, paced and translated."""
        await self.rate_limiter.throttle()
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except MailboardError:
            raise
        except Exception as e:
            raise self._translate_error(e) from e
