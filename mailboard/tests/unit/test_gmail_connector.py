"""
Test the Gmail API connector against a mocked googleapiclient service.
"""
import base64
import json

import httplib2
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from mailboard.core.connectors.gmail import GmailConnector
from mailboard.core.errors import AuthError, MessageNotFoundError, NetworkError, ProviderError
from mailboard.core.models import Account, ProviderType


def http_error(status: int, message: str = "boom", reason: str = None) -> HttpError:
    error = {"code": status, "message": message}
    if reason:
        error["errors"] = [{"reason": reason, "message": message}]
    content = json.dumps({"error": error}).encode()
    return HttpError(httplib2.Response({"status": status}), content)


def b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def gmail_message(message_id, subject="Invoice", labels=("INBOX", "UNREAD")):
    return {
        "id": message_id,
        "labelIds": list(labels),
        "snippet": f"snippet {message_id}",
        "internalDate": "1714564800000",
        "payload": {
            "headers": [
                {"name": "From", "value": "Alice <alice@example.com>"},
                {"name": "Subject", "value": subject},
                {"name": "Date", "value": "Wed, 01 May 2024 12:00:00 +0000"},
            ]
        },
    }


@pytest.fixture
def gmail_account():
    return Account(
        id="gmail-main",
        name="Gmail",
        email="me@gmail.com",
        provider=ProviderType.GMAIL,
        credentials_ref="GMAIL_TOKEN_MAIN",
    )


@pytest.fixture
def gmail_service():
    service = MagicMock()
    service.users.return_value.getProfile.return_value.execute.return_value = {"emailAddress": "me@gmail.com"}
    return service


@pytest.fixture
def messages_api(gmail_service):
    return gmail_service.users.return_value.messages.return_value


@pytest.fixture
def mock_build(gmail_service):
    with patch("mailboard.core.connectors.gmail.build", return_value=gmail_service) as build, \
            patch("mailboard.core.connectors.gmail.load_credentials", return_value=MagicMock()):
        yield build


@pytest.fixture
def connector(gmail_account, mock_build):
    return GmailConnector(gmail_account, '{"refresh_token": "r"}', requests_per_second=None, fallback_delay=0)


class TestGmailConnect:
    """Test session establishment and error translation"""

    @pytest.mark.asyncio
    async def test_connect_builds_service_and_checks_profile(self, connector, mock_build, gmail_service):
        await connector.connect()

        assert connector.is_connected
        mock_build.assert_called_once()
        assert mock_build.call_args.args == ("gmail", "v1")
        gmail_service.users.return_value.getProfile.assert_called_once_with(userId="me")

    @pytest.mark.asyncio
    async def test_connect_is_idempotent(self, connector, mock_build):
        await connector.connect()
        await connector.connect()
        assert mock_build.call_count == 1

    @pytest.mark.asyncio
    async def test_rejected_token_raises_auth_error(self, connector, gmail_service):
        gmail_service.users.return_value.getProfile.return_value.execute.side_effect = http_error(401, "Invalid Credentials")

        with pytest.raises(AuthError) as exc_info:
            await connector.connect()

        assert exc_info.value.account_id == "gmail-main"
        assert not connector.is_connected

    @pytest.mark.asyncio
    async def test_refresh_failure_raises_auth_error(self, connector, gmail_service):
        gmail_service.users.return_value.getProfile.return_value.execute.side_effect = RefreshError("invalid_grant")

        with pytest.raises(AuthError):
            await connector.connect()

    @pytest.mark.asyncio
    async def test_transport_failure_raises_network_error(self, connector, gmail_service):
        gmail_service.users.return_value.getProfile.return_value.execute.side_effect = OSError("connection reset")

        with pytest.raises(NetworkError):
            await connector.connect()

    @pytest.mark.asyncio
    async def test_malformed_token_raises_auth_error(self, gmail_account):
        connector = GmailConnector(gmail_account, "{not json", requests_per_second=None)
        with pytest.raises(AuthError):
            await connector.connect()

    def test_error_translation(self, connector):
        assert isinstance(connector._translate_error(http_error(403, "Insufficient Permission")), AuthError)
        assert isinstance(connector._translate_error(http_error(403, "User Rate Limit Exceeded")), ProviderError)
        assert not isinstance(connector._translate_error(http_error(403, "Daily Limit Exceeded")), AuthError)
        assert isinstance(connector._translate_error(http_error(500)), ProviderError)
        assert isinstance(connector._translate_error(httplib2.ServerNotFoundError("dns")), NetworkError)
        assert isinstance(connector._translate_error(http_error(404, "Not Found")), MessageNotFoundError)

    def test_quota_reason_code_is_not_auth_error(self, connector):
        error = connector._translate_error(http_error(403, "Request denied", reason="dailyLimitExceeded"))
        assert isinstance(error, ProviderError)
        assert not isinstance(error, AuthError)

    def test_permission_reason_code_is_auth_error(self, connector):
        error = connector._translate_error(http_error(403, "Request denied", reason="insufficientPermissions"))
        assert isinstance(error, AuthError)

    @pytest.mark.asyncio
    async def test_operations_require_connection(self, connector):
        with pytest.raises(ProviderError):
            await connector.get_unread_count()


class TestGmailReads:
    """Test unread counts, search and recent listing"""

    @pytest.mark.asyncio
    async def test_unread_count_from_inbox_label(self, connector, gmail_service):
        labels = gmail_service.users.return_value.labels.return_value
        labels.get.return_value.execute.return_value = {"id": "INBOX", "messagesUnread": 7}
        await connector.connect()

        assert await connector.get_unread_count() == 7
        labels.get.assert_called_with(userId="me", id="INBOX")

    @pytest.mark.asyncio
    async def test_search_yields_summaries(self, connector, messages_api):
        messages_api.list.return_value.execute.return_value = {"messages": [{"id": "m1"}, {"id": "m2"}]}
        messages_api.get.return_value.execute.side_effect = [
            gmail_message("m1"),
            gmail_message("m2", subject="Receipt", labels=("INBOX",)),
        ]
        await connector.connect()

        results = [m async for m in connector.search("invoice", 10)]

        assert [m.id for m in results] == ["m1", "m2"]
        assert results[0].sender == "Alice <alice@example.com>"
        assert results[0].subject == "Invoice"
        assert results[0].is_unread is True
        assert results[1].is_unread is False
        assert results[0].snippet == "snippet m1"
        assert results[0].date.year == 2024
        messages_api.list.assert_called_once_with(userId="me", maxResults=10, q="invoice")
        messages_api.get.assert_called_with(
            userId="me", id="m2", format="metadata", metadataHeaders=["From", "Subject", "Date"]
        )

    @pytest.mark.asyncio
    async def test_search_respects_limit(self, connector, messages_api):
        messages_api.list.return_value.execute.return_value = {
            "messages": [{"id": "m1"}, {"id": "m2"}, {"id": "m3"}],
            "nextPageToken": "more",
        }
        messages_api.get.return_value.execute.side_effect = [gmail_message("m1"), gmail_message("m2")]
        await connector.connect()

        results = [m async for m in connector.search("", 2)]

        assert len(results) == 2
        assert messages_api.get.call_count == 2
        assert messages_api.list.call_count == 1

    @pytest.mark.asyncio
    async def test_search_with_no_results(self, connector, messages_api):
        messages_api.list.return_value.execute.return_value = {"resultSizeEstimate": 0}
        await connector.connect()

        assert [m async for m in connector.search("nothing", 5)] == []

    @pytest.mark.asyncio
    async def test_search_skips_vanished_message(self, connector, messages_api):
        messages_api.list.return_value.execute.return_value = {"messages": [{"id": "gone"}, {"id": "m2"}]}
        messages_api.get.return_value.execute.side_effect = [http_error(404, "Not Found"), gmail_message("m2")]
        await connector.connect()

        results = [m async for m in connector.search("", 5)]
        assert [m.id for m in results] == ["m2"]

    @pytest.mark.asyncio
    async def test_search_propagates_errors_other_than_not_found(self, connector, messages_api):
        messages_api.list.return_value.execute.return_value = {"messages": [{"id": "m1"}, {"id": "m2"}]}
        messages_api.get.return_value.execute.side_effect = http_error(429, "Too many requests")
        await connector.connect()

        with pytest.raises(ProviderError) as exc_info:
            [m async for m in connector.search("", 5)]

        assert not isinstance(exc_info.value, MessageNotFoundError)
        assert messages_api.get.call_count == 1

    @pytest.mark.asyncio
    async def test_get_message_with_body(self, connector, messages_api):
        message = gmail_message("m1")
        message["payload"]["mimeType"] = "multipart/alternative"
        message["payload"]["parts"] = [
            {"mimeType": "text/html", "body": {"data": b64("<p>Hi</p>")}},
            {"mimeType": "text/plain", "body": {"data": b64("Hi Bob")}},
        ]
        messages_api.get.return_value.execute.return_value = message
        await connector.connect()

        result = await connector.get_message("m1", include_body=True)

        assert result.body == "Hi Bob"
        assert result.subject == "Invoice"
        messages_api.get.assert_called_once_with(userId="me", id="m1", format="full")

    @pytest.mark.asyncio
    async def test_get_missing_message(self, connector, messages_api):
        messages_api.get.return_value.execute.side_effect = http_error(404, "Not Found")
        await connector.connect()

        with pytest.raises(MessageNotFoundError):
            await connector.get_message("gone")

    @pytest.mark.asyncio
    async def test_mailbox_stats(self, connector, gmail_service, messages_api):
        gmail_service.users.return_value.getProfile.return_value.execute.return_value = {
            "emailAddress": "me@gmail.com", "messagesTotal": 1200,
        }
        labels = gmail_service.users.return_value.labels.return_value
        labels.get.return_value.execute.return_value = {"id": "INBOX", "messagesUnread": 7}
        messages_api.list.return_value.execute.return_value = {"resultSizeEstimate": 42}
        await connector.connect()

        stats = await connector.get_mailbox_stats(days=7)

        assert (stats.total_messages, stats.unread_messages, stats.recent_messages) == (1200, 7, 42)
        messages_api.list.assert_called_once_with(userId="me", q="newer_than:7d", maxResults=1)

    @pytest.mark.asyncio
    async def test_mark_read_single_uses_modify(self, connector, messages_api):
        await connector.connect()

        await connector.mark_read(["m1"])

        messages_api.modify.assert_called_once_with(userId="me", id="m1", body={"removeLabelIds": ["UNREAD"]})
        messages_api.batchModify.assert_not_called()

    @pytest.mark.asyncio
    async def test_mark_read_many_uses_batch_modify(self, connector, messages_api):
        await connector.connect()

        await connector.mark_read(["m1", "m2", "m1"])

        messages_api.batchModify.assert_called_once_with(
            userId="me", body={"ids": ["m1", "m2"], "removeLabelIds": ["UNREAD"]}
        )

    @pytest.mark.asyncio
    async def test_list_recent_query(self, connector, messages_api):
        messages_api.list.return_value.execute.return_value = {"messages": []}
        await connector.connect()

        await connector.list_recent(5, days=3)

        messages_api.list.assert_called_once_with(userId="me", maxResults=5, q="in:inbox newer_than:3d")


class TestGmailTrash:
    """Trash is always a label mutation, never a permanent delete"""

    @pytest.mark.asyncio
    async def test_batch_trash_uses_trash_label(self, connector, messages_api):
        await connector.connect()

        result = await connector.batch_trash(["a", "b", "c"])

        assert result.succeeded_ids == ["a", "b", "c"]
        assert result.failed == []
        messages_api.batchModify.assert_called_once_with(
            userId="me", body={"ids": ["a", "b", "c"], "addLabelIds": ["TRASH"]}
        )
        messages_api.delete.assert_not_called()
        messages_api.batchDelete.assert_not_called()

    @pytest.mark.asyncio
    async def test_single_message_uses_trash_endpoint(self, connector, messages_api):
        await connector.connect()

        result = await connector.batch_trash(["a"])

        assert result.succeeded_ids == ["a"]
        messages_api.trash.assert_called_once_with(userId="me", id="a")
        messages_api.batchModify.assert_not_called()

    @pytest.mark.asyncio
    async def test_bulk_failure_falls_back_with_fixed_delay(self, gmail_account, mock_build, messages_api):
        connector = GmailConnector(gmail_account, "{}", requests_per_second=None, fallback_delay=0.1)
        messages_api.batchModify.return_value.execute.side_effect = http_error(500, "Backend Error")
        messages_api.trash.return_value.execute.side_effect = [{}, http_error(404, "Not Found"), {}]
        await connector.connect()

        with patch("mailboard.core.connectors.base.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            result = await connector.batch_trash(["a", "b", "c"])

        assert result.succeeded_ids == ["a", "c"]
        assert [f.id for f in result.failed] == ["b"]
        assert result.failed[0].error_type == "provider"
        assert messages_api.trash.call_count == 3
        assert mock_sleep.await_count == 2
        mock_sleep.assert_awaited_with(0.1)
        messages_api.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_chunks_large_batches(self, gmail_account, mock_build, messages_api):
        connector = GmailConnector(gmail_account, "{}", requests_per_second=None, bulk_max_size=2)
        await connector.connect()

        result = await connector.batch_trash(["a", "b", "c", "d", "e"])

        assert result.succeeded_count == 5
        assert messages_api.batchModify.call_count == 3

    @pytest.mark.asyncio
    async def test_restore_removes_trash_label(self, connector, messages_api):
        await connector.connect()

        result = await connector.restore(["a", "b"])

        assert result.succeeded_ids == ["a", "b"]
        messages_api.batchModify.assert_called_once_with(
            userId="me", body={"ids": ["a", "b"], "removeLabelIds": ["TRASH"]}
        )

    @pytest.mark.asyncio
    async def test_restore_single_uses_untrash(self, connector, messages_api):
        await connector.connect()

        await connector.restore(["a"])

        messages_api.untrash.assert_called_once_with(userId="me", id="a")
