"""
Multi-Account Manager - one connector per account, fan-out aggregation

Owns the live connector of every enabled account and runs read operations
against all of them concurrently. Each account is a bulkhead: a failure in
one account (bad credentials, network outage, backend error) is captured in
that account's slot of the result and never aborts the others.

Operations on the same account are serialized by a per-account asyncio.Lock;
operations on different accounts run concurrently.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from mailboard.core.accounts.registry import AccountRegistry
from mailboard.core.config import Settings, get_settings
from mailboard.core.connectors import ProviderConnector, build_connector
from mailboard.core.errors import AuthError, MailboardError, ValidationError
from mailboard.core.insights import analyze_activity, top_senders
from mailboard.core.models import (
    Account,
    AccountInsights,
    AccountMailboxStats,
    AccountStatus,
    AccountSummary,
    AccountUnreadCount,
    ConnectionResult,
    InsightsResult,
    MailboxStatsResult,
    MessageSummary,
    SearchResults,
    TaggedMessage,
    UnreadCountResult,
)
from mailboard.core.retry_manager import RetryManager

logger = logging.getLogger(__name__)

ConnectorFactory = Callable[[Account, str], ProviderConnector]
ConnectorOperation = Callable[[ProviderConnector], Awaitable[Any]]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class AccountEntry:
    """Runtime state for one configured account."""
    account: Account
    status: AccountStatus = AccountStatus.PENDING
    connector: Optional[ProviderConnector] = None
    last_error: Optional[str] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


def _newest_first(message: MessageSummary) -> datetime:
    if message.date is None:
        return _EPOCH
    # Naive IMAP dates are server-local; astimezone() treats them as local time
    return message.date.astimezone(timezone.utc)


class MultiAccountManager:
    """
    Aggregates unread counts, search and recent mail across accounts.

    Usage:
        manager = MultiAccountManager(AccountRegistry())
        results = await manager.initialize_all_accounts()
        counts = await manager.get_unread_counts()
        await manager.close()
    """

    def __init__(self,
                 registry: AccountRegistry,
                 connector_factory: Optional[ConnectorFactory] = None,
                 settings: Optional[Settings] = None,
                 retry_manager: Optional[RetryManager] = None):
        self.registry = registry
        self.settings = settings or get_settings()
        self._connector_factory = connector_factory or self._default_factory
        self.retry_manager = retry_manager or RetryManager(
            max_retries=self.settings.connect_max_retries,
            base_delay=self.settings.connect_retry_base_delay,
        )
        self._entries: Dict[str, AccountEntry] = {}
        for account in registry.get_all_accounts():
            entry = AccountEntry(account=account)
            if not account.enabled:
                entry.status = AccountStatus.DISABLED
                if registry.get_secret(account.id) is None:
                    entry.last_error = f"Credentials not found ({account.credentials_ref})"
            self._entries[account.id] = entry

    def _default_factory(self, account: Account, secret: str) -> ProviderConnector:
        return build_connector(account, secret, self.settings)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def get_all_accounts(self) -> List[Account]:
        return self.registry.get_all_accounts()

    def _entry(self, account_id: str) -> AccountEntry:
        entry = self._entries.get(account_id)
        if entry is None:
            available = ', '.join(self._entries.keys())
            raise ValidationError(
                f"Account '{account_id}' not found. Available accounts: {available}",
                account_id=account_id,
            )
        return entry

    def _connected_entries(self) -> List[AccountEntry]:
        return [e for e in self._entries.values() if e.status == AccountStatus.CONNECTED]

    def get_connector(self, account_id: str) -> ProviderConnector:
        """
        Connector for a connected account.

        Raises:
            ValidationError: Unknown, disabled or unconnected account
        """
        entry = self._entry(account_id)
        if entry.status != AccountStatus.CONNECTED or entry.connector is None:
            raise ValidationError(
                f"Account '{account_id}' is not connected (status: {entry.status.value})",
                account_id=account_id,
            )
        return entry.connector

    async def initialize_all_accounts(self) -> Dict[str, ConnectionResult]:
        """
        Connect every enabled account concurrently.

        Returns:
            {account_id: ConnectionResult} for each enabled account
        """
        entries = [e for e in self._entries.values() if e.account.enabled]
        logger.info(f"Initializing {len(entries)} account(s)")
        results = await asyncio.gather(*(self._initialize(entry) for entry in entries))
        connected = sum(1 for r in results if r.ok)
        logger.info(f"Initialized accounts: {connected}/{len(entries)} connected")
        return {entry.account.id: result for entry, result in zip(entries, results)}

    async def _discard_connector(self, entry: AccountEntry):
        connector, entry.connector = entry.connector, None
        if connector is None:
            return
        try:
            await connector.disconnect()
        except MailboardError as e:
            logger.warning(f"Error discarding connector for {entry.account.id}: {e.message}")

    async def _initialize(self, entry: AccountEntry) -> ConnectionResult:
        """
        Connect one account. A connected account keeps its session; any other
        account gets a fresh connector built from freshly resolved credentials,
        so a retry after an auth failure sees a rotated password or token.
        """
        account_id = entry.account.id
        async with entry.lock:
            try:
                if entry.status != AccountStatus.CONNECTED or entry.connector is None:
                    await self._discard_connector(entry)
                    secret = self.registry.refresh_secret(account_id)
                    if secret is None:
                        raise AuthError(
                            f"Credentials not found ({entry.account.credentials_ref})", account_id=account_id
                        )
                    entry.connector = self._connector_factory(entry.account, secret)
                await self.retry_manager.run(entry.connector.connect, f"connect {account_id}")
            except MailboardError as e:
                entry.status = AccountStatus.FAILED
                entry.last_error = e.message
                logger.error(f"Failed to connect {account_id}: {e.message}")
                return ConnectionResult(ok=False, error=e.message, error_type=e.error_type)
            except Exception as e:
                entry.status = AccountStatus.FAILED
                entry.last_error = str(e)
                logger.exception(f"Unexpected error connecting {account_id}")
                return ConnectionResult(ok=False, error=str(e), error_type="provider")

            entry.status = AccountStatus.CONNECTED
            entry.last_error = None
            return ConnectionResult(ok=True)

    def get_account_summary(self) -> List[AccountSummary]:
        return [
            AccountSummary(
                account_id=entry.account.id,
                name=entry.account.name,
                email=entry.account.email,
                provider=entry.account.provider,
                status=entry.status,
                last_error=entry.last_error,
            )
            for entry in self._entries.values()
        ]

    # ------------------------------------------------------------------
    # Per-account serialization
    # ------------------------------------------------------------------

    async def _run_locked(self, entry: AccountEntry, operation: ConnectorOperation) -> Any:
        async with entry.lock:
            if entry.status != AccountStatus.CONNECTED or entry.connector is None:
                raise ValidationError(
                    f"Account '{entry.account.id}' is not connected (status: {entry.status.value})",
                    account_id=entry.account.id,
                )
            try:
                return await operation(entry.connector)
            except AuthError as e:
                entry.status = AccountStatus.FAILED
                entry.last_error = e.message
                raise

    async def run_exclusive(self, account_id: str, operation: ConnectorOperation) -> Any:
        """Run `operation(connector)` while holding the account's lock."""
        return await self._run_locked(self._entry(account_id), operation)

    async def _guarded(self, entry: AccountEntry, operation: ConnectorOperation,
                       action: str) -> Tuple[Any, Optional[str]]:
        """Run an operation for one account, capturing its failure as a message."""
        try:
            return await self._run_locked(entry, operation), None
        except MailboardError as e:
            logger.warning(f"{action} failed for {entry.account.id}: {e.message}")
            return None, e.message
        except Exception as e:
            logger.exception(f"Unexpected error during {action} for {entry.account.id}")
            return None, str(e)

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    async def get_unread_counts(self) -> UnreadCountResult:
        entries = self._connected_entries()
        outcomes = await asyncio.gather(*(
            self._guarded(entry, lambda connector: connector.get_unread_count(), "unread count")
            for entry in entries
        ))

        result = UnreadCountResult()
        for entry, (count, error) in zip(entries, outcomes):
            result.per_account[entry.account.id] = AccountUnreadCount(
                account=entry.account.name, count=count, error=error
            )
            if count is not None:
                result.total += count
        return result

    def _tag(self, entry: AccountEntry, messages: List[MessageSummary]) -> List[TaggedMessage]:
        return [
            TaggedMessage(
                **message.model_dump(),
                account_id=entry.account.id,
                account_name=entry.account.name,
                provider=entry.account.provider,
            )
            for message in messages
        ]

    async def _fan_out(self, operation: ConnectorOperation, action: str) -> SearchResults:
        entries = self._connected_entries()
        outcomes = await asyncio.gather(*(self._guarded(entry, operation, action) for entry in entries))

        results = SearchResults()
        for entry, (messages, error) in zip(entries, outcomes):
            if error is not None:
                results.errors[entry.account.id] = error
                continue
            results.messages.extend(self._tag(entry, messages))
        return results

    async def search_across_accounts(self, query: str, limit: Optional[int] = None) -> SearchResults:
        """
        Search every connected account.

        Results keep each backend's native order and are concatenated in
        account configuration order; scores are not comparable across
        providers so no global ranking is attempted.
        """
        limit = limit if limit is not None else self.settings.search_default_limit

        async def collect(connector: ProviderConnector) -> List[MessageSummary]:
            return [message async for message in connector.search(query, limit)]

        results = await self._fan_out(collect, "search")
        logger.info(f"Search '{query}': {len(results.messages)} result(s), {len(results.errors)} account error(s)")
        return results

    async def list_recent_across_accounts(self, limit: Optional[int] = None,
                                          days: Optional[int] = None) -> SearchResults:
        """Recent inbox mail from every connected account, newest first."""
        limit = limit if limit is not None else self.settings.recent_default_limit
        days = days if days is not None else self.settings.recent_default_days
        results = await self._fan_out(lambda connector: connector.list_recent(limit, days), "recent mail")
        results.messages.sort(key=_newest_first, reverse=True)
        return results

    async def get_message(self, account_id: str, message_id: str, include_body: bool = False) -> TaggedMessage:
        """
        One message of one account, tagged with its origin.

        Raises:
            ValidationError: Unknown or unconnected account
            MessageNotFoundError: No such message in the mailbox
        """
        entry = self._entry(account_id)
        message = await self._run_locked(entry, lambda connector: connector.get_message(message_id, include_body))
        return self._tag(entry, [message])[0]

    async def mark_read(self, account_id: str, message_ids: Sequence[str]) -> int:
        """Mark messages of one account as read; returns how many ids were sent."""
        ids = [str(m) for m in dict.fromkeys(message_ids or []) if str(m).strip()]
        if not ids:
            raise ValidationError("No message ids supplied", account_id=account_id)
        await self.run_exclusive(account_id, lambda connector: connector.mark_read(ids))
        logger.info(f"Marked {len(ids)} message(s) read in {account_id}")
        return len(ids)

    async def get_mailbox_stats(self, days: Optional[int] = None) -> MailboxStatsResult:
        """Total/unread/recent counts per connected account plus their sums."""
        days = days if days is not None else self.settings.stats_recent_days
        entries = self._connected_entries()
        outcomes = await asyncio.gather(*(
            self._guarded(entry, lambda connector: connector.get_mailbox_stats(days), "mailbox stats")
            for entry in entries
        ))

        result = MailboxStatsResult(days=days)
        for entry, (stats, error) in zip(entries, outcomes):
            result.per_account[entry.account.id] = AccountMailboxStats(
                account=entry.account.name, stats=stats, error=error
            )
            if stats is not None:
                result.total_messages += stats.total_messages
                result.unread_messages += stats.unread_messages
                result.recent_messages += stats.recent_messages
        return result

    async def get_insights(self, days: int = 30, sample_size: Optional[int] = None) -> InsightsResult:
        """
        Activity by day and top senders per account, computed from up to
        `sample_size` recent messages of the last `days` days.
        """
        sample_size = sample_size if sample_size is not None else self.settings.insights_sample_size

        async def sample(connector: ProviderConnector) -> Tuple[List[MessageSummary], int]:
            messages = await connector.list_recent(sample_size, days)
            return messages, await connector.get_unread_count()

        entries = self._connected_entries()
        outcomes = await asyncio.gather(*(self._guarded(entry, sample, "insights") for entry in entries))

        result = InsightsResult(days=days)
        for entry, (outcome, error) in zip(entries, outcomes):
            if error is not None:
                result.per_account[entry.account.id] = AccountInsights(account=entry.account.name, error=error)
                continue
            messages, unread = outcome
            result.per_account[entry.account.id] = AccountInsights(
                account=entry.account.name,
                total_emails=len(messages),
                unread_emails=unread,
                activity=analyze_activity(messages),
                top_senders=top_senders(messages),
            )
            result.total_emails += len(messages)
            if messages:
                result.active_accounts += 1
        return result

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def disconnect_account(self, account_id: str):
        entry = self._entry(account_id)
        async with entry.lock:
            if entry.connector is not None:
                try:
                    await entry.connector.disconnect()
                except MailboardError as e:
                    logger.warning(f"Error disconnecting {account_id}: {e.message}")
            if entry.status == AccountStatus.CONNECTED:
                entry.status = AccountStatus.PENDING

    async def close(self):
        """Disconnect every account."""
        await asyncio.gather(*(
            self.disconnect_account(entry.account.id)
            for entry in self._entries.values()
            if entry.connector is not None
        ))
