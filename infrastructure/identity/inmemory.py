"""In-memory implementation of IdentityStore.

Single-process only. Useful for local dev and tests; production wiring
points the authenticator at the user/token tables instead.
"""
from __future__ import annotations

import secrets
from typing import Dict, Optional

from application.ports.identity import ApiTokenRecord, AuthenticatedUser, IdentityStore
from application.services.auth_service import hash_token


class InMemoryIdentityStore(IdentityStore):
    def __init__(self) -> None:
        self._users: Dict[str, AuthenticatedUser] = {}
        self._tokens: Dict[str, ApiTokenRecord] = {}

    def add_user(self, user_id: str, *, email: Optional[str] = None, name: Optional[str] = None) -> AuthenticatedUser:
        user = AuthenticatedUser(id=str(user_id), email=email, name=name)
        self._users[user.id] = user
        return user

    def issue_api_token(self, user_id: str) -> str:
        """Create an API token for ``user_id``; only its hash is kept."""
        token = secrets.token_urlsafe(32)
        token_hash = hash_token(token)
        self._tokens[token_hash] = ApiTokenRecord(token_hash=token_hash, user_id=str(user_id))
        return token

    def revoke_api_token(self, token: str) -> bool:
        record = self._tokens.get(hash_token(token))
        if record is None:
            return False
        self._tokens[record.token_hash] = record.model_copy(update={"revoked": True})
        return True

    async def find_api_token(self, token_hash: str) -> Optional[ApiTokenRecord]:  # type: ignore[override]
        return self._tokens.get(token_hash)

    async def get_user(self, user_id: str) -> Optional[AuthenticatedUser]:  # type: ignore[override]
        return self._users.get(user_id)
