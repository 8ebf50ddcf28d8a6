"""
Test account registry loading and credential resolution.
"""
import pytest
from unittest.mock import patch

from keyring.errors import KeyringError

from mailboard.core.accounts.credentials import CredentialStore
from mailboard.core.accounts.registry import AccountRegistry, default_credentials_ref
from mailboard.core.errors import ValidationError
from mailboard.core.models import ProviderType


class TestCredentialStore:
    """Test keyring/env credential lookup"""

    def test_env_lookup(self):
        store = CredentialStore(use_keyring=False, environ={"YAHOO_PW": "secret"})
        assert store.get("YAHOO_PW") == "secret"
        assert store.get("MISSING") is None
        assert store.has("YAHOO_PW")

    def test_empty_value_is_missing(self):
        store = CredentialStore(use_keyring=False, environ={"YAHOO_PW": ""})
        assert store.get("YAHOO_PW") is None

    @patch("mailboard.core.accounts.credentials.keyring")
    def test_keyring_takes_priority(self, mock_keyring):
        mock_keyring.get_password.return_value = "from-keyring"
        store = CredentialStore(service_name="mailboard", use_keyring=True, environ={"REF": "from-env"})

        assert store.get("REF") == "from-keyring"
        mock_keyring.get_password.assert_called_once_with("mailboard", "REF")

    @patch("mailboard.core.accounts.credentials.keyring")
    def test_keyring_error_falls_back_to_env(self, mock_keyring):
        mock_keyring.get_password.side_effect = KeyringError("locked")
        store = CredentialStore(use_keyring=True, environ={"REF": "from-env"})

        assert store.get("REF") == "from-env"


class TestAccountRegistry:
    """Test registry construction"""

    def test_accounts_in_configuration_order(self, registry):
        ids = [a.id for a in registry.get_all_accounts()]
        assert ids == ["gmail-main", "yahoo", "aol"]

    def test_providers_parsed(self, registry):
        assert registry.get_account("gmail-main").provider == ProviderType.GMAIL
        assert registry.get_account("aol").provider == ProviderType.AOL_IMAP
        assert registry.get_account("aol").is_imap

    def test_secret_resolved_and_hidden_from_account(self, registry):
        assert registry.get_secret("yahoo") == "yahoo-app-password"
        assert "yahoo-app-password" not in registry.get_account("yahoo").model_dump_json()

    def test_missing_credentials_disable_account(self):
        """Accounts without credentials are kept but disabled, not fatal"""
        config = {
            "accounts": {
                "yahoo": {"email": "a@yahoo.com", "provider": "yahoo_imap", "credentials_ref": "PW"},
                "aol": {"email": "b@aol.com", "provider": "aol_imap", "credentials_ref": "NOT_SET"},
            }
        }
        store = CredentialStore(use_keyring=False, environ={"PW": "x"})
        registry = AccountRegistry.from_mapping(config, credentials=store)

        assert len(registry) == 2
        assert registry.get_account("yahoo").enabled is True
        assert registry.get_account("aol").enabled is False
        assert registry.get_secret("aol") is None
        assert [a.id for a in registry.enabled_accounts()] == ["yahoo"]

    def test_malformed_entry_skipped(self):
        config = {
            "accounts": {
                "bad": {"email": "x@example.com", "provider": "hotmail"},
                "nope": {"email": "y@example.com"},
                "yahoo": {"email": "a@yahoo.com", "provider": "yahoo_imap", "credentials_ref": "PW"},
            }
        }
        store = CredentialStore(use_keyring=False, environ={"PW": "x"})
        registry = AccountRegistry.from_mapping(config, credentials=store)

        assert [a.id for a in registry.get_all_accounts()] == ["yahoo"]

    def test_unknown_account_raises_validation_error(self, registry):
        with pytest.raises(ValidationError) as exc_info:
            registry.get_account("hotmail")
        assert "Available accounts" in str(exc_info.value)
        assert "hotmail" not in registry

    def test_refresh_secret_picks_up_rotation(self):
        environ = {"PW": "old"}
        config = {"accounts": {"yahoo": {"provider": "yahoo_imap", "credentials_ref": "PW"}}}
        registry = AccountRegistry.from_mapping(config, credentials=CredentialStore(use_keyring=False, environ=environ))

        environ["PW"] = "new"

        assert registry.get_secret("yahoo") == "old"
        assert registry.refresh_secret("yahoo") == "new"
        assert registry.get_secret("yahoo") == "new"

    def test_refresh_secret_keeps_cached_value_when_unresolvable(self):
        environ = {"PW": "old"}
        config = {"accounts": {"yahoo": {"provider": "yahoo_imap", "credentials_ref": "PW"}}}
        registry = AccountRegistry.from_mapping(config, credentials=CredentialStore(use_keyring=False, environ=environ))

        del environ["PW"]

        assert registry.refresh_secret("yahoo") == "old"

    def test_default_credentials_ref(self):
        assert default_credentials_ref("work-yahoo", ProviderType.YAHOO_IMAP) == "IMAP_PASSWORD_WORK_YAHOO"
        assert default_credentials_ref("my gmail", ProviderType.GMAIL) == "GMAIL_TOKEN_MY_GMAIL"

    def test_imap_overrides(self):
        config = {
            "accounts": {
                "aol": {
                    "email": "b@aol.com",
                    "provider": "aol_imap",
                    "imap": {"host": "imap.example.com", "port": 1993, "trash_folder": "Deleted"},
                }
            }
        }
        store = CredentialStore(use_keyring=False, environ={"IMAP_PASSWORD_AOL": "pw"})
        account = AccountRegistry.from_mapping(config, credentials=store).get_account("aol")

        assert account.imap_host == "imap.example.com"
        assert account.imap_port == 1993
        assert account.trash_folder == "Deleted"
        assert account.credentials_ref == "IMAP_PASSWORD_AOL"
        assert account.enabled is True

    def test_load_from_yaml(self, tmp_path):
        path = tmp_path / "accounts.yaml"
        path.write_text(
            "accounts:\n"
            "  yahoo:\n"
            "    name: Yahoo Mail\n"
            "    email: me@yahoo.com\n"
            "    provider: yahoo_imap\n"
            "    credentials_ref: YAHOO_PW\n"
        )
        store = CredentialStore(use_keyring=False, environ={"YAHOO_PW": "pw"})
        registry = AccountRegistry(config_path=path, credentials=store)

        assert registry.config_path == path
        assert registry.get_account("yahoo").name == "Yahoo Mail"

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "accounts.yaml"
        path.write_text("")
        registry = AccountRegistry(config_path=path, credentials=CredentialStore(use_keyring=False, environ={}))
        assert registry.get_all_accounts() == []

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            AccountRegistry(config_path=tmp_path / "nope.yaml")
