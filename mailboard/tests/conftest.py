"""
Shared fixtures: isolated settings, an in-memory connector and helpers to
build registries/managers over it.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from unittest.mock import MagicMock

from mailboard.core import config
from mailboard.core.accounts.credentials import CredentialStore
from mailboard.core.accounts.multi_account import MultiAccountManager
from mailboard.core.accounts.registry import AccountRegistry
from mailboard.core.connectors.base import ProviderConnector
from mailboard.core.errors import MessageNotFoundError, ProviderError
from mailboard.core.models import MailboxStats, MessageSummary
from mailboard.core.retry_manager import RetryManager


ACCOUNTS_CONFIG = {
    "accounts": {
        "gmail-main": {
            "name": "Gmail",
            "email": "me@gmail.com",
            "provider": "gmail",
            "credentials_ref": "GMAIL_TOKEN_MAIN",
        },
        "yahoo": {
            "name": "Yahoo",
            "email": "me@yahoo.com",
            "provider": "yahoo_imap",
            "credentials_ref": "YAHOO_APP_PASSWORD",
        },
        "aol": {
            "name": "AOL",
            "email": "me@aol.com",
            "provider": "aol_imap",
            "credentials_ref": "AOL_APP_PASSWORD",
        },
    }
}

SECRETS = {
    "GMAIL_TOKEN_MAIN": '{"refresh_token": "r", "client_id": "c", "client_secret": "s"}',
    "YAHOO_APP_PASSWORD": "yahoo-app-password",
    "AOL_APP_PASSWORD": "aol-app-password",
}


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Fresh settings per test; never touch the real keyring."""
    monkeypatch.setenv("CREDENTIALS_USE_KEYRING", "false")
    monkeypatch.delenv("API_KEY", raising=False)
    monkeypatch.delenv("AUDIT_LOG_PATH", raising=False)
    config.reload_settings()
    yield
    config._settings = None


def make_message(message_id: str, subject: str = "Hello", hours_ago: int = 0,
                 is_unread: bool = True, sender: str = "alice@example.com") -> MessageSummary:
    return MessageSummary(
        id=message_id,
        sender=sender,
        subject=subject,
        date=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc) - timedelta(hours=hours_ago),
        snippet=f"snippet {message_id}",
        is_unread=is_unread,
    )


class FakeConnector(ProviderConnector):
    """In-memory connector with scriptable failures."""

    def __init__(self, account, secret, *,
                 messages: Optional[List[MessageSummary]] = None,
                 unread: int = 0,
                 connect_errors: Optional[List[Exception]] = None,
                 unread_error: Optional[Exception] = None,
                 search_error: Optional[Exception] = None,
                 fail_ids=(),
                 bulk_error: Optional[Exception] = None,
                 op_delay: float = 0.0,
                 **kwargs):
        kwargs.setdefault("fallback_delay", 0)
        super().__init__(account, secret, **kwargs)
        self.connected = False
        self.messages = list(messages or [])
        self.unread = unread
        self.connect_errors = list(connect_errors or [])
        self.unread_error = unread_error
        self.search_error = search_error
        self.fail_ids = set(fail_ids)
        self.bulk_error = bulk_error
        self.op_delay = op_delay
        self.trashed = set()
        self.calls = []
        self.events = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    def _translate_error(self, error):
        return ProviderError(str(error), account_id=self.account.id)

    async def _connect(self):
        self.calls.append("connect")
        if self.connect_errors:
            raise self.connect_errors.pop(0)
        self.connected = True

    async def _disconnect(self):
        self.calls.append("disconnect")
        self.connected = False

    async def get_unread_count(self) -> int:
        if self.unread_error:
            raise self.unread_error
        return self.unread

    async def search(self, query, limit):
        if self.search_error:
            raise self.search_error
        matches = [m for m in self.messages if query.lower() in m.subject.lower()]
        for message in matches[:limit]:
            yield message

    async def list_recent(self, limit, days=None):
        return self.messages[:limit]

    async def get_message(self, message_id, include_body=False):
        for message in self.messages:
            if message.id == message_id:
                copy = message.model_copy()
                if include_body:
                    copy.body = f"body {message_id}"
                return copy
        raise MessageNotFoundError(f"{message_id} not found", account_id=self.account.id)

    async def mark_read(self, message_ids):
        self.calls.append(("mark_read", tuple(message_ids)))
        for message in self.messages:
            if message.id in message_ids:
                message.is_unread = False

    async def get_mailbox_stats(self, days=7):
        if self.unread_error:
            raise self.unread_error
        return MailboxStats(total_messages=len(self.messages), unread_messages=self.unread,
                            recent_messages=len(self.messages), days=days)

    async def trash(self, message_id):
        self.calls.append(("trash", message_id))
        if message_id in self.fail_ids:
            raise ProviderError(f"cannot trash {message_id}", account_id=self.account.id)
        self.trashed.add(message_id)

    async def _bulk_trash(self, message_ids):
        self.events.append(("start", tuple(message_ids)))
        if self.op_delay:
            await asyncio.sleep(self.op_delay)
        self.events.append(("end", tuple(message_ids)))
        self.calls.append(("bulk_trash", tuple(message_ids)))
        if self.bulk_error:
            raise self.bulk_error
        if self.fail_ids.intersection(message_ids):
            raise ProviderError("bulk rejected", account_id=self.account.id)
        self.trashed.update(message_ids)

    async def _restore_one(self, message_id):
        self.calls.append(("restore", message_id))
        self.trashed.discard(message_id)

    async def _bulk_restore(self, message_ids):
        self.calls.append(("bulk_restore", tuple(message_ids)))
        self.trashed.difference_update(message_ids)


@pytest.fixture
def fake_connector_cls():
    return FakeConnector


@pytest.fixture
def credential_store():
    return CredentialStore(use_keyring=False, environ=dict(SECRETS))


@pytest.fixture
def registry(credential_store):
    return AccountRegistry.from_mapping(ACCOUNTS_CONFIG, credentials=credential_store)


@pytest.fixture
def make_manager(registry):
    """
    Build a MultiAccountManager over FakeConnectors.

    Usage: manager, connectors = make_manager({"yahoo": {"unread": 3}})
    """
    def _make(connector_options: Optional[Dict[str, dict]] = None, account_registry=None):
        options = connector_options or {}
        connectors: Dict[str, FakeConnector] = {}

        def factory(account, secret):
            connector = FakeConnector(account, secret, **options.get(account.id, {}))
            connectors[account.id] = connector
            return connector

        manager = MultiAccountManager(
            account_registry or registry,
            connector_factory=factory,
            retry_manager=RetryManager(max_retries=1, base_delay=0),
        )
        return manager, connectors

    return _make


@pytest.fixture
def mock_imap_client():
    """Mock IMAPClient for testing"""
    client = MagicMock()
    client.login.return_value = b"LOGIN completed"
    client.select_folder.return_value = {b"EXISTS": 3}
    client.search.return_value = [1, 2, 3]
    client.fetch.return_value = {}
    client.copy.return_value = None
    client.add_flags.return_value = {}
    client.remove_flags.return_value = {}
    return client
