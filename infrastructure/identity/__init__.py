"""Identity store implementations."""

from .inmemory import InMemoryIdentityStore

__all__ = ["InMemoryIdentityStore"]
