"""Async client for the dream journal API."""

from dreamjournal.client.security import SecureClient, TokenFetchError, TokenState

__all__ = ["SecureClient", "TokenFetchError", "TokenState"]
