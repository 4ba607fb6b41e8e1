"""Gmail REST API client on httpx."""

import asyncio
import base64
import inspect
from email.message import EmailMessage
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

import httpx

from termail.core.gmail.base import MailClient
from termail.core.gmail.content import to_cached_label, to_cached_message
from termail.core.models.message import CachedLabel, CachedMessage, is_allmail
from termail.utils.errors import (
    AuthExpiredError,
    MissingCredentialsError,
    RemoteServiceError,
    TransientNetworkError,
)
from termail.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://gmail.googleapis.com/gmail/v1/users/me"
METADATA_HEADERS = ["Subject", "From", "To", "Date"]

TokenProvider = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]


class GmailClient(MailClient):
    """Remote mailbox backed by the Gmail REST API.

    Usage:
        async with GmailClient(credentials.get_token) as client:
            labels = await client.fetch_labels()
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        max_concurrency: int = 8,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialise the client.

        Args:
            token_provider: Callable returning the bearer token (sync or async)
            base_url: API root for the authenticated user
            timeout: Per-request timeout in seconds
            max_concurrency: Parallel metadata requests per page
            transport: Custom httpx transport (tests use ``httpx.MockTransport``)
        """
        self._token_provider = token_provider
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
        )

    async def _token(self) -> str:
        token = self._token_provider()
        if inspect.isawaitable(token):
            token = await token
        if not token:
            raise MissingCredentialsError("No access token available")
        return token

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Issue an authenticated request and decode the JSON response.

        Raises:
            AuthExpiredError: On HTTP 401
            TransientNetworkError: On timeouts and connection failures
            RemoteServiceError: On any other non-2xx status
        """
        headers = {"Authorization": f"Bearer {await self._token()}"}

        try:
            response = await self._client.request(
                method, path, params=params, json=json, headers=headers
            )
        except httpx.TimeoutException as e:
            raise TransientNetworkError(
                f"Gmail API request timed out: {method} {path}",
                details={"method": method, "path": path},
            ) from e
        except httpx.TransportError as e:
            raise TransientNetworkError(
                f"Could not reach Gmail API: {e}",
                details={"method": method, "path": path},
            ) from e

        if response.status_code == 401:
            raise AuthExpiredError(
                details={"method": method, "path": path, "status": 401}
            )

        if response.status_code >= 400:
            logger.error(f"Gmail API error {response.status_code} for {method} {path}")
            raise RemoteServiceError(
                f"Gmail API returned {response.status_code} for {method} {path}",
                details={
                    "method": method,
                    "path": path,
                    "status": response.status_code,
                    "body": response.text[:500],
                },
            )

        if not response.content:
            return {}
        return response.json()

    async def fetch_labels(self) -> List[CachedLabel]:
        data = await self._request("GET", "/labels")
        return [to_cached_label(item) for item in data.get("labels", [])]

    async def _fetch_metadata(self, message_id: str) -> CachedMessage:
        async with self._semaphore:
            data = await self._request(
                "GET",
                f"/messages/{message_id}",
                params={"format": "metadata", "metadataHeaders": METADATA_HEADERS},
            )
        return to_cached_message(data)

    async def fetch_messages(
        self, label_id: str, offset: int, limit: int
    ) -> List[CachedMessage]:
        """List a label and fetch metadata for one page of its messages.

        The list call asks for ``offset + limit`` references and skips the
        first ``offset``. ``ALLMAIL`` lists without a label filter.
        """
        params: Dict[str, Any] = {"maxResults": offset + limit}
        if not is_allmail(label_id):
            params["labelIds"] = label_id

        data = await self._request("GET", "/messages", params=params)
        refs = data.get("messages", [])[offset : offset + limit]

        logger.debug(f"Fetching {len(refs)} messages for {label_id} (offset={offset})")
        return list(
            await asyncio.gather(*(self._fetch_metadata(ref["id"]) for ref in refs))
        )

    async def fetch_full_message(self, message_id: str) -> CachedMessage:
        data = await self._request(
            "GET", f"/messages/{message_id}", params={"format": "full"}
        )
        return to_cached_message(data)

    async def send(
        self,
        to: str,
        subject: str,
        body: str,
        cc: Optional[str] = None,
        bcc: Optional[str] = None,
    ) -> str:
        """Send a plain-text RFC 2822 message."""
        message = EmailMessage()
        message["To"] = to
        if cc:
            message["Cc"] = cc
        if bcc:
            message["Bcc"] = bcc
        message["Subject"] = subject
        message.set_content(body)

        raw = base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")
        data = await self._request("POST", "/messages/send", json={"raw": raw})

        logger.info("Message sent")
        return data.get("id", "")

    async def modify_labels(
        self,
        message_id: str,
        add: Sequence[str] = (),
        remove: Sequence[str] = (),
    ) -> None:
        await self._request(
            "POST",
            f"/messages/{message_id}/modify",
            json={"addLabelIds": list(add), "removeLabelIds": list(remove)},
        )

    async def trash(self, message_id: str) -> None:
        await self._request("POST", f"/messages/{message_id}/trash")

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GmailClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.close()
        return False
