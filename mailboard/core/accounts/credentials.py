"""
Credential lookup for configured accounts.

Resolves an account's `credentials_ref` to a secret:
1. OS keyring (service name from settings), when enabled
2. Environment variable with the same name

Writing or migrating secrets is left to the user's keyring tooling; this
module only reads.

Usage:
    from mailboard.core.accounts.credentials import CredentialStore

    store = CredentialStore()
    password = store.get("YAHOO_APP_PASSWORD")
"""
import logging
import os
from typing import Mapping, Optional

import keyring
from keyring.errors import KeyringError

from mailboard.core.config import get_settings

logger = logging.getLogger(__name__)


class CredentialStore:
    """Read-only view over keyring and environment credentials."""

    def __init__(self,
                 service_name: Optional[str] = None,
                 use_keyring: Optional[bool] = None,
                 environ: Optional[Mapping[str, str]] = None):
        settings = get_settings()
        self.service_name = service_name or settings.keyring_service
        self.use_keyring = settings.credentials_use_keyring if use_keyring is None else use_keyring
        self._environ = os.environ if environ is None else environ
        # Warn once per key
        self._warned_keys = set()

    def get(self, ref: str) -> Optional[str]:
        """Return the secret for `ref`, or None if it cannot be resolved."""
        if not ref:
            return None

        if self.use_keyring:
            try:
                value = keyring.get_password(self.service_name, ref)
                if value:
                    return value
            except KeyringError as e:
                if ref not in self._warned_keys:
                    logger.warning(f"Failed to retrieve {ref} from keyring: {e}")
                    self._warned_keys.add(ref)

        value = self._environ.get(ref)
        if value:
            return value
        return None

    def has(self, ref: str) -> bool:
        return self.get(ref) is not None
