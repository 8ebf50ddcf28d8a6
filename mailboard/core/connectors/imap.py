"""
IMAP connector for Yahoo and AOL mailboxes (imapclient).

Message ids are IMAP UIDs (as strings) in the account's folder, INBOX by
default. Trash is COPY to the provider's trash folder followed by the
\\Deleted flag on the original; the connector never expunges, so a trashed
message stays recoverable both in the trash folder and in place until the
server compacts the mailbox. Searches skip messages already flagged
\\Deleted.
"""
import email
import logging
import re
from datetime import date, timedelta
from email.header import decode_header, make_header
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Set

from imapclient import DELETED, IMAPClient, SEEN
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError, LoginError

from mailboard.core.connectors.base import ProviderConnector
from mailboard.core.errors import AuthError, MailboardError, MessageNotFoundError, NetworkError, ProviderError
from mailboard.core.models import IMAP_PROVIDER_DEFAULTS, MailboxStats, MessageSummary

logger = logging.getLogger(__name__)

FETCH_CHUNK_SIZE = 25
SNIPPET_BYTES = 200
SNIPPET_FETCH = f"BODY.PEEK[TEXT]<0.{SNIPPET_BYTES}>"
SNIPPET_KEY = b"BODY[TEXT]<0>"
MESSAGE_ID_FETCH = "BODY.PEEK[HEADER.FIELDS (MESSAGE-ID)]"
MESSAGE_ID_KEY = b"BODY[HEADER.FIELDS (MESSAGE-ID)]"
BODY_FETCH = "BODY.PEEK[]"
BODY_KEY = b"BODY[]"
SUMMARY_FETCH = ["ENVELOPE", "FLAGS", SNIPPET_FETCH]


def _decode(value) -> str:
    """Decode an RFC 2047 encoded header value (bytes or str)."""
    if value is None:
        return ""
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    try:
        return str(make_header(decode_header(value)))
    except (UnicodeDecodeError, LookupError, ValueError):
        return value


def _format_address(envelope) -> str:
    if envelope is None or not envelope.from_:
        return ""
    address = envelope.from_[0]
    mailbox = _decode(address.mailbox)
    host = _decode(address.host)
    addr = f"{mailbox}@{host}" if host else mailbox
    name = _decode(address.name)
    return f"{name} <{addr}>" if name else addr


def _snippet(raw: Optional[bytes]) -> str:
    if not raw:
        return ""
    text = raw.decode("utf-8", errors="replace")
    return re.sub(r"\s+", " ", text).strip()[:SNIPPET_BYTES]


def _text_body(raw: Optional[bytes]) -> str:
    """Plain-text body of a full RFC 822 message (text/html if there is no text part)."""
    if not raw:
        return ""
    message = email.message_from_bytes(raw)
    html = ""
    for part in message.walk():
        if part.is_multipart() or part.get_content_disposition() == "attachment":
            continue
        payload = part.get_payload(decode=True)
        if payload is None:
            continue
        text = payload.decode(part.get_content_charset() or "utf-8", errors="replace")
        if part.get_content_type() == "text/plain":
            return text
        if part.get_content_type() == "text/html" and not html:
            html = text
    return html


class ImapConnector(ProviderConnector):
    """ProviderConnector over IMAP with app-password login."""

    def __init__(self, account, secret, *, timeout: float = 30.0, **kwargs):
        super().__init__(account, secret, **kwargs)
        defaults = IMAP_PROVIDER_DEFAULTS.get(account.provider, {})
        self.host = account.imap_host or defaults.get("host")
        self.port = account.imap_port or defaults.get("port", 993)
        self.folder = account.folder
        self.trash_folder = account.trash_folder or defaults.get("trash_folder", "Trash")
        self.timeout = timeout
        self._client: Optional[IMAPClient] = None
        self._selected: Optional[str] = None
        # UIDs already copied to trash whose \Deleted flag has not been set yet
        self._copied_to_trash: Set[int] = set()
        if not self.host:
            raise ProviderError("No IMAP host configured", account_id=account.id)

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    def _translate_error(self, error: Exception) -> MailboardError:
        account_id = self.account.id
        if isinstance(error, LoginError):
            return AuthError(f"IMAP login failed: {error}", account_id=account_id)
        if isinstance(error, (IMAPClientAbortError, OSError)):
            return NetworkError(f"IMAP connection error: {error}", account_id=account_id)
        if isinstance(error, IMAPClientError):
            return ProviderError(f"IMAP server error: {error}", account_id=account_id)
        return ProviderError(f"IMAP error: {error}", account_id=account_id)

    # ------------------------------------------------------------------
    # Session (blocking helpers run via _call)
    # ------------------------------------------------------------------

    def _open(self) -> IMAPClient:
        client = IMAPClient(self.host, port=self.port, ssl=True, timeout=self.timeout)
        try:
            client.login(self.account.email, self._secret)
        except IMAPClientError:
            client.shutdown()
            raise
        return client

    async def _connect(self):
        logger.info(f"Connecting to {self.host}:{self.port} as {self.account.email}")
        self._client = await self._call(self._open)
        self._selected = None

    async def _disconnect(self):
        client, self._client, self._selected = self._client, None, None
        try:
            await self._call(client.logout)
        except MailboardError as e:
            logger.debug(f"Logout from {self.account.id} failed: {e}")

    def _select(self, folder: str):
        if self._selected != folder:
            self._client.select_folder(folder)
            self._selected = folder

    def _search_uids(self, criteria: List[Any], folder: Optional[str] = None) -> List[int]:
        """UIDs matching criteria, newest first."""
        self._select(folder or self.folder)
        charset = None
        if any(isinstance(c, str) and not c.isascii() for c in criteria):
            charset = "UTF-8"
        return sorted(self._client.search(criteria, charset=charset), reverse=True)

    def _fetch(self, uids: List[int], items: List[str]) -> Dict[int, Dict[bytes, Any]]:
        self._select(self.folder)
        return self._client.fetch(uids, items)

    def _parse_uids(self, message_ids: Sequence[str]) -> List[int]:
        try:
            return [int(message_id) for message_id in message_ids]
        except (TypeError, ValueError) as e:
            raise ProviderError(f"Invalid IMAP UID in {list(message_ids)}", account_id=self.account.id) from e

    def _require_existing(self, uids: List[int], items: List[str]) -> Dict[int, Dict[bytes, Any]]:
        data = self._fetch(uids, items)
        missing = [uid for uid in uids if uid not in data]
        if missing:
            raise MessageNotFoundError(f"Message(s) not found in {self.folder}: {missing}", account_id=self.account.id)
        return data

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_unread_count(self) -> int:
        self._require_connection()
        uids = await self._call(self._search_uids, ["UNSEEN", "NOT", "DELETED"])
        return len(uids)

    def _summarize(self, uid: int, item: Dict[bytes, Any]) -> MessageSummary:
        envelope = item.get(b"ENVELOPE")
        flags = item.get(b"FLAGS", ())
        subject = _decode(envelope.subject) if envelope else ""
        return MessageSummary(
            id=str(uid),
            sender=_format_address(envelope),
            subject=subject or "(No Subject)",
            date=envelope.date if envelope else None,
            snippet=_snippet(item.get(SNIPPET_KEY)),
            is_unread=SEEN not in flags,
        )

    async def _iter_summaries(self, uids: List[int]) -> AsyncIterator[MessageSummary]:
        for start in range(0, len(uids), FETCH_CHUNK_SIZE):
            chunk = uids[start:start + FETCH_CHUNK_SIZE]
            data = await self._call(self._fetch, chunk, SUMMARY_FETCH)
            for uid in chunk:
                if uid in data:
                    yield self._summarize(uid, data[uid])

    async def search(self, query: str, limit: int) -> AsyncIterator[MessageSummary]:
        self._require_connection()
        criteria: List[Any] = ["NOT", "DELETED"]
        if query:
            criteria += ["TEXT", query]
        uids = await self._call(self._search_uids, criteria)
        async for summary in self._iter_summaries(uids[:max(limit, 0)]):
            yield summary

    async def list_recent(self, limit: int, days: Optional[int] = None) -> List[MessageSummary]:
        self._require_connection()
        criteria: List[Any] = ["NOT", "DELETED"]
        if days:
            criteria += ["SINCE", date.today() - timedelta(days=days)]
        uids = await self._call(self._search_uids, criteria)
        return [summary async for summary in self._iter_summaries(uids[:max(limit, 0)])]

    async def get_message(self, message_id: str, include_body: bool = False) -> MessageSummary:
        self._require_connection()
        uid = self._parse_uids([message_id])[0]
        items = SUMMARY_FETCH + [BODY_FETCH] if include_body else SUMMARY_FETCH
        data = await self._call(self._require_existing, [uid], items)
        summary = self._summarize(uid, data[uid])
        if include_body:
            summary.body = _text_body(data[uid].get(BODY_KEY))
        return summary

    def _mailbox_stats(self, days: int) -> MailboxStats:
        since = date.today() - timedelta(days=days)
        return MailboxStats(
            total_messages=len(self._search_uids(["NOT", "DELETED"])),
            unread_messages=len(self._search_uids(["UNSEEN", "NOT", "DELETED"])),
            recent_messages=len(self._search_uids(["NOT", "DELETED", "SINCE", since])),
            days=days,
        )

    async def get_mailbox_stats(self, days: int = 7) -> MailboxStats:
        """Counts exclude messages flagged \\Deleted (trashed but not yet expunged)."""
        self._require_connection()
        return await self._call(self._mailbox_stats, days)

    def _add_seen(self, uids: List[int]):
        self._require_existing(uids, ["FLAGS"])
        self._client.add_flags(uids, [SEEN])

    async def mark_read(self, message_ids: Sequence[str]):
        self._require_connection()
        await self._call(self._add_seen, self._parse_uids(list(dict.fromkeys(message_ids))))

    # ------------------------------------------------------------------
    # Trash / restore
    # ------------------------------------------------------------------

    def _move_to_trash(self, uids: List[int]):
        """
        COPY then STORE \\Deleted. A message whose copy succeeded but whose
        flag did not is only flagged on the next attempt, never copied twice.
        """
        self._require_existing(uids, ["FLAGS"])
        to_copy = [uid for uid in uids if uid not in self._copied_to_trash]
        if to_copy:
            self._client.copy(to_copy, self.trash_folder)
            self._copied_to_trash.update(to_copy)
        self._client.add_flags(uids, [DELETED])
        self._copied_to_trash.difference_update(uids)

    def _restore_from_trash(self, uids: List[int]):
        data = self._require_existing(uids, [MESSAGE_ID_FETCH])
        self._client.remove_flags(uids, [DELETED])
        self._copied_to_trash.difference_update(uids)

        message_ids = []
        for uid in uids:
            header = email.message_from_bytes(data[uid].get(MESSAGE_ID_KEY) or b"")
            if header.get("Message-ID"):
                message_ids.append(header["Message-ID"].strip())
        if not message_ids:
            return

        # Retire the copies made by trash so the message is not duplicated
        copies: List[int] = []
        for message_id in message_ids:
            copies.extend(self._search_uids(["HEADER", "Message-ID", message_id], folder=self.trash_folder))
        if copies:
            self._client.add_flags(copies, [DELETED])
        self._select(self.folder)

    async def trash(self, message_id: str):
        self._require_connection()
        await self._call(self._move_to_trash, self._parse_uids([message_id]))

    async def _bulk_trash(self, message_ids: List[str]):
        await self._call(self._move_to_trash, self._parse_uids(message_ids))

    async def _restore_one(self, message_id: str):
        self._require_connection()
        await self._call(self._restore_from_trash, self._parse_uids([message_id]))

    async def _bulk_restore(self, message_ids: List[str]):
        await self._call(self._restore_from_trash, self._parse_uids(message_ids))
