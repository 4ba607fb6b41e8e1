"""Bearer token storage in the system keyring."""

import asyncio
import json
import os
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from termail.utils.errors import KeyringUnavailableError, KeyStoreError
from termail.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SERVICE = "termail-gmail-credentials"
DEFAULT_USERNAME = "default"
TOKEN_ENV_VAR = "TERMAIL_TOKEN"


class CredentialStore:
    """Reads, writes and clears the OAuth access token.

    The keyring entry holds either the bare token or a JSON document with
    an ``access_token`` field. ``TERMAIL_TOKEN`` overrides the keyring.
    """

    def __init__(
        self, service: str = DEFAULT_SERVICE, username: str = DEFAULT_USERNAME
    ):
        self.service = service
        self.username = username

    async def get_token(self) -> Optional[str]:
        """Return the access token, or None if none is stored."""
        env_token = os.getenv(TOKEN_ENV_VAR)
        if env_token:
            return env_token

        try:
            stored = await asyncio.to_thread(
                keyring.get_password, self.service, self.username
            )
        except KeyringError as e:
            raise KeyringUnavailableError(
                f"Could not read credentials from keyring: {e}",
                details={"service": self.service},
            ) from e

        if not stored:
            return None

        try:
            data = json.loads(stored)
        except json.JSONDecodeError:
            return stored

        if isinstance(data, dict):
            return data.get("access_token")
        return stored

    async def store_token(self, token: str) -> None:
        try:
            await asyncio.to_thread(
                keyring.set_password, self.service, self.username, token
            )
        except KeyringError as e:
            raise KeyringUnavailableError(
                f"Could not write credentials to keyring: {e}",
                details={"service": self.service},
            ) from e

        logger.info(f"Credentials stored in keyring service '{self.service}'")

    async def clear(self) -> None:
        """Delete the stored credentials.

        Raises:
            KeyStoreError: If nothing is stored or the keyring refuses
        """
        try:
            await asyncio.to_thread(
                keyring.delete_password, self.service, self.username
            )
        except PasswordDeleteError as e:
            raise KeyStoreError(
                f"No stored credentials found: {e}",
                details={"service": self.service},
            ) from e
        except KeyringError as e:
            raise KeyringUnavailableError(
                f"Keyring refused to delete credentials: {e}",
                details={"service": self.service},
            ) from e

        logger.info(f"Credentials removed from keyring service '{self.service}'")
