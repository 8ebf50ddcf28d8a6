"""
Provider connectors.

`build_connector` picks the connector class for an account's provider and
wires in the pacing/fallback settings.
"""
from typing import Dict, Optional, Type

from mailboard.core.config import Settings, get_settings
from mailboard.core.connectors.base import ProviderConnector
from mailboard.core.connectors.gmail import GmailConnector
from mailboard.core.connectors.imap import ImapConnector
from mailboard.core.errors import ValidationError
from mailboard.core.models import Account, ProviderType

CONNECTOR_TYPES: Dict[ProviderType, Type[ProviderConnector]] = {
    ProviderType.GMAIL: GmailConnector,
    ProviderType.YAHOO_IMAP: ImapConnector,
    ProviderType.AOL_IMAP: ImapConnector,
}


def build_connector(account: Account, secret: str, settings: Optional[Settings] = None) -> ProviderConnector:
    """Create an unconnected connector for `account`."""
    settings = settings or get_settings()
    connector_cls = CONNECTOR_TYPES.get(account.provider)
    if connector_cls is None:
        raise ValidationError(f"Unsupported provider {account.provider}", account_id=account.id)

    kwargs = {
        "fallback_delay": settings.trash_fallback_delay,
        "bulk_min_size": settings.bulk_trash_min_size,
        "bulk_max_size": settings.bulk_trash_max_size,
    }
    if connector_cls is ImapConnector:
        kwargs["requests_per_second"] = settings.imap_requests_per_second
        kwargs["timeout"] = settings.imap_timeout
    else:
        kwargs["requests_per_second"] = settings.gmail_requests_per_second
    return connector_cls(account, secret, **kwargs)


__all__ = [
    "ProviderConnector",
    "GmailConnector",
    "ImapConnector",
    "CONNECTOR_TYPES",
    "build_connector",
]
