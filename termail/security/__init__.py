"""Credential handling."""

from .credentials import CredentialStore

__all__ = ["CredentialStore"]
