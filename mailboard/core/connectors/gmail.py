"""
Gmail connector using the Gmail REST API (google-api-python-client).

The account secret is an authorized-user token (the JSON written by the
OAuth installed-app flow), either inline or as a path to the token file.
Token refresh is handled by google-auth; a failed refresh surfaces as
AuthError.

Trash/restore use label mutations only:
- single message: users.messages.trash / untrash
- batches: users.messages.batchModify adding/removing the TRASH label
"""
import base64
import json
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Set

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from mailboard.core.connectors.base import ProviderConnector
from mailboard.core.errors import AuthError, MailboardError, MessageNotFoundError, NetworkError, ProviderError
from mailboard.core.models import MailboxStats, MessageSummary

logger = logging.getLogger(__name__)

GMAIL_SCOPES = ["https://www.googleapis.com/auth/gmail.modify"]
TRASH_LABEL = "TRASH"
UNREAD_LABEL = "UNREAD"
METADATA_HEADERS = ["From", "Subject", "Date"]
# messages.list page size cap
MAX_PAGE_SIZE = 500

# 403/429 reason codes that mean "slow down", not "bad credentials"
QUOTA_REASONS = {
    "ratelimitexceeded",
    "userratelimitexceeded",
    "dailylimitexceeded",
    "quotaexceeded",
    "limitexceeded",
    "rate_limit_exceeded",
    "resource_exhausted",
}


def load_credentials(secret: str) -> Credentials:
    """Build OAuth credentials from inline token JSON or a token file path."""
    if secret.lstrip().startswith("{"):
        return Credentials.from_authorized_user_info(json.loads(secret), GMAIL_SCOPES)
    return Credentials.from_authorized_user_file(secret, GMAIL_SCOPES)


def _error_reasons(error: HttpError) -> Set[str]:
    """Machine-readable reason codes from an HttpError body, lowercased."""
    details = getattr(error, "error_details", None)
    if not isinstance(details, list):
        return set()
    return {str(d["reason"]).lower() for d in details if isinstance(d, dict) and d.get("reason")}


def _header(headers: List[Dict[str, str]], name: str) -> str:
    for header in headers:
        if header.get("name", "").lower() == name.lower():
            return header.get("value", "")
    return ""


def _message_date(message: Dict[str, Any], headers: List[Dict[str, str]]) -> Optional[datetime]:
    internal = message.get("internalDate")
    if internal:
        return datetime.fromtimestamp(int(internal) / 1000, tz=timezone.utc)
    raw = _header(headers, "Date")
    if raw:
        try:
            return parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            return None
    return None


def _decode_part(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def _extract_body(payload: Dict[str, Any]) -> str:
    """First text/plain part of a `format=full` payload (falls back to text/html)."""
    if not payload:
        return ""
    mime_type = payload.get("mimeType", "")
    data = payload.get("body", {}).get("data")
    if data and not payload.get("parts") and mime_type in ("text/plain", "text/html", ""):
        return _decode_part(data)

    html = ""
    for part in payload.get("parts", []):
        part_type = part.get("mimeType", "")
        if part_type.startswith("multipart/"):
            nested = _extract_body(part)
            if nested:
                return nested
        part_data = part.get("body", {}).get("data")
        if not part_data:
            continue
        if part_type == "text/plain":
            return _decode_part(part_data)
        if part_type == "text/html" and not html:
            html = _decode_part(part_data)
    return html


class GmailConnector(ProviderConnector):
    """ProviderConnector backed by the Gmail API."""

    user_id = "me"

    def __init__(self, account, secret, **kwargs):
        super().__init__(account, secret, **kwargs)
        self._service = None

    @property
    def is_connected(self) -> bool:
        return self._service is not None

    def _translate_error(self, error: Exception) -> MailboardError:
        account_id = self.account.id
        if isinstance(error, RefreshError):
            return AuthError(f"Gmail token refresh failed: {error}", account_id=account_id)
        if isinstance(error, HttpError):
            status = error.resp.status
            reason = getattr(error, "reason", None) or str(error)
            if status == 401:
                return AuthError(f"Gmail rejected credentials: {reason}", account_id=account_id)
            if status == 404:
                return MessageNotFoundError(f"Gmail message not found: {reason}", account_id=account_id)
            text = reason.lower()
            if status == 403 and not (_error_reasons(error) & QUOTA_REASONS) \
                    and "limit exceeded" not in text and "rate limit" not in text and "quota" not in text:
                return AuthError(f"Gmail permission denied: {reason}", account_id=account_id)
            return ProviderError(f"Gmail API error {status}: {reason}", account_id=account_id)
        if isinstance(error, (TransportError, httplib2.HttpLib2Error, OSError)):
            return NetworkError(f"Gmail transport error: {error}", account_id=account_id)
        return ProviderError(f"Gmail error: {error}", account_id=account_id)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def _connect(self):
        try:
            credentials = load_credentials(self._secret)
        except (ValueError, KeyError, OSError) as e:
            raise AuthError(f"Invalid Gmail token: {e}", account_id=self.account.id) from e
        service = await self._call(build, "gmail", "v1", credentials=credentials, cache_discovery=False)
        profile = await self._call(lambda: service.users().getProfile(userId=self.user_id).execute())
        self._service = service
        logger.debug(f"Gmail profile for {self.account.id}: {profile.get('emailAddress')}")

    async def _disconnect(self):
        self._service = None

    @property
    def _messages(self):
        self._require_connection()
        return self._service.users().messages()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_unread_count(self) -> int:
        self._require_connection()
        label = await self._call(
            lambda: self._service.users().labels().get(userId=self.user_id, id="INBOX").execute()
        )
        return int(label.get("messagesUnread", 0))

    async def get_message(self, message_id: str, include_body: bool = False) -> MessageSummary:
        self._require_connection()
        if include_body:
            params = {"format": "full"}
        else:
            params = {"format": "metadata", "metadataHeaders": METADATA_HEADERS}
        message = await self._call(
            lambda: self._messages.get(userId=self.user_id, id=message_id, **params).execute()
        )
        payload = message.get("payload", {})
        headers = payload.get("headers", [])
        return MessageSummary(
            id=message["id"],
            sender=_header(headers, "From"),
            subject=_header(headers, "Subject") or "(No Subject)",
            date=_message_date(message, headers),
            snippet=message.get("snippet", ""),
            is_unread=UNREAD_LABEL in message.get("labelIds", []),
            body=_extract_body(payload) if include_body else None,
        )

    async def search(self, query: str, limit: int) -> AsyncIterator[MessageSummary]:
        self._require_connection()
        yielded = 0
        page_token = None
        while yielded < limit:
            params = {"userId": self.user_id, "maxResults": min(limit - yielded, MAX_PAGE_SIZE)}
            if query:
                params["q"] = query
            if page_token:
                params["pageToken"] = page_token
            response = await self._call(lambda: self._messages.list(**params).execute())

            for meta in response.get("messages", []):
                try:
                    summary = await self.get_message(meta["id"])
                except MessageNotFoundError:
                    # Deleted between list and get
                    logger.debug(f"Skipping vanished message {meta['id']} in {self.account.id}")
                    continue
                yield summary
                yielded += 1
                if yielded >= limit:
                    return

            page_token = response.get("nextPageToken")
            if not page_token:
                return

    async def list_recent(self, limit: int, days: Optional[int] = None) -> List[MessageSummary]:
        query = "in:inbox"
        if days:
            query += f" newer_than:{days}d"
        return [summary async for summary in self.search(query, limit)]

    async def get_mailbox_stats(self, days: int = 7) -> MailboxStats:
        """Totals from the profile; the recent count is Gmail's result-size estimate."""
        self._require_connection()
        profile = await self._call(lambda: self._service.users().getProfile(userId=self.user_id).execute())
        unread = await self.get_unread_count()
        recent = await self._call(
            lambda: self._messages.list(userId=self.user_id, q=f"newer_than:{days}d", maxResults=1).execute()
        )
        return MailboxStats(
            total_messages=int(profile.get("messagesTotal", 0)),
            unread_messages=unread,
            recent_messages=int(recent.get("resultSizeEstimate", 0)),
            days=days,
        )

    async def mark_read(self, message_ids: Sequence[str]):
        self._require_connection()
        ids = list(dict.fromkeys(message_ids))
        if len(ids) == 1:
            body = {"removeLabelIds": [UNREAD_LABEL]}
            await self._call(lambda: self._messages.modify(userId=self.user_id, id=ids[0], body=body).execute())
            return
        for start in range(0, len(ids), self.bulk_max_size):
            body = {"ids": ids[start:start + self.bulk_max_size], "removeLabelIds": [UNREAD_LABEL]}
            await self._call(lambda: self._messages.batchModify(userId=self.user_id, body=body).execute())

    # ------------------------------------------------------------------
    # Trash / restore
    # ------------------------------------------------------------------

    async def trash(self, message_id: str):
        await self._call(lambda: self._messages.trash(userId=self.user_id, id=message_id).execute())

    async def _bulk_trash(self, message_ids: List[str]):
        body = {"ids": message_ids, "addLabelIds": [TRASH_LABEL]}
        await self._call(lambda: self._messages.batchModify(userId=self.user_id, body=body).execute())

    async def _restore_one(self, message_id: str):
        await self._call(lambda: self._messages.untrash(userId=self.user_id, id=message_id).execute())

    async def _bulk_restore(self, message_ids: List[str]):
        body = {"ids": message_ids, "removeLabelIds": [TRASH_LABEL]}
        await self._call(lambda: self._messages.batchModify(userId=self.user_id, body=body).execute())
