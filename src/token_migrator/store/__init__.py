"""Token persistence."""

from token_migrator.store.token_store import JsonTokenStore, TokenNotFound, TokenStore

__all__ = ["JsonTokenStore", "TokenNotFound", "TokenStore"]
