from datetime import timedelta

import jwt
import pytest

from application.services.auth_service import Authenticator, hash_token
from core.config import settings
from core.exceptions import TokenExpiredException, UnauthorizedException
from infrastructure.identity import InMemoryIdentityStore


def _store() -> InMemoryIdentityStore:
    store = InMemoryIdentityStore()
    store.add_user("u1", email="ada@example.com", name="Ada")
    return store


@pytest.mark.asyncio
async def test_valid_jwt_resolves_identity():
    auth = Authenticator()
    token = auth.create_access_token("u1", email="ada@example.com", name="Ada")
    user = await auth.authenticate(token)
    assert user.id == "u1"
    assert user.name == "Ada"


@pytest.mark.asyncio
async def test_expired_jwt_is_distinguished():
    auth = Authenticator()
    token = auth.create_access_token("u1", expires_delta=timedelta(seconds=-5))
    with pytest.raises(TokenExpiredException):
        await auth.authenticate(token)


@pytest.mark.asyncio
async def test_bad_signature_is_distinguished():
    token = jwt.encode({"sub": "u1", "type": "access"}, "another-secret", algorithm=settings.ALGORITHM)
    with pytest.raises(TokenExpiredException):
        await Authenticator().authenticate(token)


@pytest.mark.asyncio
async def test_missing_token_is_unauthorized():
    with pytest.raises(UnauthorizedException) as exc:
        await Authenticator().authenticate(None)
    assert exc.value.details == {"reason": "no_token"}


@pytest.mark.asyncio
async def test_api_token_lookup_by_hash():
    store = _store()
    raw = store.issue_api_token("u1")
    record = await store.find_api_token(hash_token(raw))
    assert record is not None and record.user_id == "u1"

    user = await Authenticator(store).authenticate(raw)
    assert user.id == "u1"


@pytest.mark.asyncio
async def test_revoked_or_unknown_api_token_rejected():
    store = _store()
    raw = store.issue_api_token("u1")
    store.revoke_api_token(raw)
    auth = Authenticator(store)

    with pytest.raises(UnauthorizedException):
        await auth.authenticate(raw)
    with pytest.raises(UnauthorizedException):
        await auth.authenticate("not-a-known-token")
