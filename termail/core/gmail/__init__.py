"""Remote mailbox access."""

from .base import MailClient
from .client import GmailClient

__all__ = ["GmailClient", "MailClient"]
