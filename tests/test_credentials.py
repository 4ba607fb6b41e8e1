"""
Tests for keyring-backed credential storage
"""
import json

import keyring
import pytest
from keyring.errors import KeyringError, PasswordDeleteError

from termail.security.credentials import TOKEN_ENV_VAR, CredentialStore
from termail.utils.errors import KeyringUnavailableError, KeyStoreError


@pytest.fixture
def fake_keyring(monkeypatch):
    """Dictionary-backed replacement for the keyring functions."""
    monkeypatch.delenv(TOKEN_ENV_VAR, raising=False)
    entries = {}

    def get_password(service, user):
        return entries.get((service, user))

    def set_password(service, user, value):
        entries[(service, user)] = value

    def delete_password(service, user):
        if (service, user) not in entries:
            raise PasswordDeleteError("Password not found")
        del entries[(service, user)]

    monkeypatch.setattr(keyring, "get_password", get_password)
    monkeypatch.setattr(keyring, "set_password", set_password)
    monkeypatch.setattr(keyring, "delete_password", delete_password)
    return entries


class TestCredentialStore:
    """Tests for CredentialStore"""

    async def test_store_and_read_token(self, fake_keyring):
        """Test storing and reading a token"""
        store = CredentialStore()

        await store.store_token("plain-token")

        assert await store.get_token() == "plain-token"

    async def test_json_entry_with_access_token(self, fake_keyring):
        """Test reading a JSON keyring entry"""
        fake_keyring[("svc", "me")] = json.dumps(
            {"access_token": "from-json", "refresh_token": "r"}
        )

        assert await CredentialStore("svc", "me").get_token() == "from-json"

    async def test_nothing_stored(self, fake_keyring):
        """Test reading with no stored entry"""
        assert await CredentialStore().get_token() is None

    async def test_environment_overrides_keyring(self, fake_keyring, monkeypatch):
        """Test TERMAIL_TOKEN takes precedence"""
        fake_keyring[("termail-gmail-credentials", "default")] = "stored"
        monkeypatch.setenv(TOKEN_ENV_VAR, "from-env")

        assert await CredentialStore().get_token() == "from-env"

    async def test_clear_removes_entry(self, fake_keyring):
        """Test clearing removes the keyring entry"""
        store = CredentialStore()
        await store.store_token("t")

        await store.clear()

        assert fake_keyring == {}

    async def test_clear_without_entry_raises(self, fake_keyring):
        """Test clearing with no entry"""
        with pytest.raises(KeyStoreError):
            await CredentialStore().clear()

    async def test_keyring_failure_maps_to_unavailable(self, monkeypatch):
        """Test keyring backend errors"""
        monkeypatch.delenv(TOKEN_ENV_VAR, raising=False)

        def broken(service, user):
            raise KeyringError("locked")

        monkeypatch.setattr(keyring, "get_password", broken)

        with pytest.raises(KeyringUnavailableError):
            await CredentialStore().get_token()
