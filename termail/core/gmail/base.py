"""Interface of the remote mail service consumed by the sync engine."""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from termail.core.models.message import CachedLabel, CachedMessage


class MailClient(ABC):
    """Abstract remote mailbox.

    Implementations raise ``AuthExpiredError`` when the token is rejected,
    ``TransientNetworkError`` for connectivity problems and
    ``RemoteServiceError`` for any other failed call.
    """

    @abstractmethod
    async def fetch_labels(self) -> List[CachedLabel]:
        pass

    @abstractmethod
    async def fetch_messages(
        self, label_id: str, offset: int, limit: int
    ) -> List[CachedMessage]:
        """Fetch a page of message metadata, newest first.

        Args:
            label_id: Label to list, ``ALLMAIL`` for no filter
            offset: Number of messages to skip
            limit: Maximum number of messages to return
        """
        pass

    @abstractmethod
    async def fetch_full_message(self, message_id: str) -> CachedMessage:
        """Fetch a message including its decoded bodies."""
        pass

    @abstractmethod
    async def send(
        self,
        to: str,
        subject: str,
        body: str,
        cc: Optional[str] = None,
        bcc: Optional[str] = None,
    ) -> str:
        """Send a plain-text message and return its server id."""
        pass

    @abstractmethod
    async def modify_labels(
        self,
        message_id: str,
        add: Sequence[str] = (),
        remove: Sequence[str] = (),
    ) -> None:
        pass

    @abstractmethod
    async def trash(self, message_id: str) -> None:
        pass

    async def close(self) -> None:
        """Release transport resources."""
        return None
