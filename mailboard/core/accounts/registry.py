"""
Account Registry - Multi-Account Configuration

Loads account metadata from accounts.yaml and resolves credentials through
the CredentialStore. Accounts whose credentials cannot be resolved stay in
the registry with enabled=False so they still show up in summaries.

accounts.yaml layout:

    accounts:
      personal-gmail:
        name: Personal Gmail
        email: me@gmail.com
        provider: gmail
        credentials_ref: GMAIL_TOKEN_PERSONAL_GMAIL
      yahoo:
        name: Yahoo
        email: me@yahoo.com
        provider: yahoo_imap
        imap:
          trash_folder: Trash
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from mailboard.core.accounts.credentials import CredentialStore
from mailboard.core.config import get_settings
from mailboard.core.errors import ValidationError
from mailboard.core.models import Account, ProviderType
from mailboard.core.paths import get_config_path

logger = logging.getLogger(__name__)


def sanitize_account_id(account_id: str) -> str:
    """Uppercase, dashes/spaces to underscores (used for env var names)."""
    return account_id.upper().replace('-', '_').replace(' ', '_')


def default_credentials_ref(account_id: str, provider: ProviderType) -> str:
    """Environment/keyring key used when an account does not name one."""
    prefix = "GMAIL_TOKEN" if provider == ProviderType.GMAIL else "IMAP_PASSWORD"
    return f"{prefix}_{sanitize_account_id(account_id)}"


class AccountRegistry:
    """
    Registry of configured accounts, in configuration order.

    Usage:
        registry = AccountRegistry()                       # config/accounts.yaml
        registry = AccountRegistry.from_mapping({...})     # in-memory config
        for account in registry.get_all_accounts():
            ...
    """

    def __init__(self,
                 config_path: Optional[Union[str, Path]] = None,
                 credentials: Optional[CredentialStore] = None,
                 config: Optional[Mapping[str, Any]] = None):
        self.credentials = credentials or CredentialStore()
        self._accounts: Dict[str, Account] = {}
        self._secrets: Dict[str, str] = {}
        self.config_path: Optional[Path] = None

        if config is None:
            if config_path is None:
                config_path = get_config_path(get_settings().accounts_config, required=True)
            self.config_path = Path(config_path)
            config = self._read_yaml(self.config_path)

        self._load_accounts(config)

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any],
                     credentials: Optional[CredentialStore] = None) -> "AccountRegistry":
        """Build a registry from an already-parsed config dict."""
        return cls(config=config, credentials=credentials)

    @staticmethod
    def _read_yaml(path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise FileNotFoundError(f"Accounts config {path} not found")
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
        if not data:
            logger.warning(f"Accounts config {path} is empty")
            return {}
        return data

    def _load_accounts(self, config: Mapping[str, Any]):
        entries = config.get('accounts') or {}
        for account_id, acc_config in entries.items():
            try:
                account = self._build_account(str(account_id), acc_config or {})
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Failed to load account '{account_id}': {e}")
                continue

            secret = self.credentials.get(account.credentials_ref)
            if secret is None:
                if account.enabled:
                    logger.warning(
                        f"Missing credentials for account '{account_id}' "
                        f"(expected {account.credentials_ref}); account disabled"
                    )
                account = account.model_copy(update={'enabled': False})
            else:
                self._secrets[account.id] = secret

            self._accounts[account.id] = account
            logger.info(f"Loaded account configuration: {account.id} ({account.name}, {account.provider.value})")

        enabled = sum(1 for a in self._accounts.values() if a.enabled)
        logger.info(f"Loaded {len(self._accounts)} account(s), {enabled} enabled")

    @staticmethod
    def _build_account(account_id: str, acc_config: Mapping[str, Any]) -> Account:
        provider = ProviderType(acc_config['provider'])
        imap_config = acc_config.get('imap') or {}
        return Account(
            id=account_id,
            name=acc_config.get('name', account_id),
            email=acc_config.get('email', ''),
            provider=provider,
            credentials_ref=acc_config.get('credentials_ref') or default_credentials_ref(account_id, provider),
            enabled=bool(acc_config.get('enabled', True)),
            imap_host=imap_config.get('host'),
            imap_port=imap_config.get('port'),
            folder=imap_config.get('folder', 'INBOX'),
            trash_folder=imap_config.get('trash_folder'),
        )

    def get_all_accounts(self) -> List[Account]:
        """All configured accounts, in configuration order."""
        return list(self._accounts.values())

    def enabled_accounts(self) -> List[Account]:
        return [a for a in self._accounts.values() if a.enabled]

    def get_account(self, account_id: str) -> Account:
        """
        Get account by id.

        Raises:
            ValidationError: If the account is not configured
        """
        if account_id not in self._accounts:
            available = ', '.join(self._accounts.keys())
            raise ValidationError(
                f"Account '{account_id}' not found. Available accounts: {available}",
                account_id=account_id,
            )
        return self._accounts[account_id]

    def get_secret(self, account_id: str) -> Optional[str]:
        """Resolved secret for an enabled account (never exposed in summaries)."""
        return self._secrets.get(account_id)

    def refresh_secret(self, account_id: str) -> Optional[str]:
        """
        Resolve the account's secret again from the credential store, so a
        rotated password or re-issued token is picked up without a restart.
        Keeps the cached secret when the store no longer resolves one.
        """
        account = self.get_account(account_id)
        secret = self.credentials.get(account.credentials_ref)
        if secret is None:
            logger.warning(f"Credentials for '{account_id}' ({account.credentials_ref}) could not be re-resolved")
            return self._secrets.get(account_id)
        self._secrets[account_id] = secret
        return secret

    def __contains__(self, account_id: str) -> bool:
        return account_id in self._accounts

    def __len__(self) -> int:
        return len(self._accounts)
