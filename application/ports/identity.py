"""Identity port: resolves API tokens and users for connection authentication."""
from __future__ import annotations

from typing import Optional, Protocol

from pydantic import BaseModel


class AuthenticatedUser(BaseModel):
    """Identity resolved from a bearer credential."""

    id: str
    email: Optional[str] = None
    name: Optional[str] = None


class ApiTokenRecord(BaseModel):
    token_hash: str
    user_id: str
    revoked: bool = False


class IdentityStore(Protocol):
    """Lookup contract backed by the user/token data store."""

    async def find_api_token(self, token_hash: str) -> Optional[ApiTokenRecord]: ...

    async def get_user(self, user_id: str) -> Optional[AuthenticatedUser]: ...


__all__ = ["AuthenticatedUser", "ApiTokenRecord", "IdentityStore"]
