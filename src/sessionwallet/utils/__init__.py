"""Utility modules for sessionwallet."""

from sessionwallet.utils.locks import IdentityLock, get_identity_lock

__all__ = ["IdentityLock", "get_identity_lock"]
