import jwt
import pytest

from application.services.token_service import TokenInvalidError, TokenService, hash_token


@pytest.fixture
def tokens(settings, revocation_store, clock) -> TokenService:
    return TokenService(settings.tokens, revocation_store, clock)


def test_access_token_round_trip(tokens):
    token = tokens.issue_access_token(7, "ana@example.com", "user", "sess-1")
    claims = tokens.verify_access_token(token)
    assert claims.user_id == 7
    assert claims.email == "ana@example.com"
    assert claims.role == "user"
    assert claims.session_id == "sess-1"
    assert claims.expires_at > claims.issued_at


def test_access_token_expires_with_clock(tokens, clock):
    token = tokens.issue_access_token(7, "ana@example.com", "user", "sess-1")
    clock.advance(minutes=14, seconds=59)
    tokens.verify_access_token(token)
    clock.advance(seconds=1)
    with pytest.raises(TokenInvalidError):
        tokens.verify_access_token(token)


def test_refresh_token_lives_seven_days(tokens, clock):
    token = tokens.issue_refresh_token(7, "sess-1")
    clock.advance(days=6, hours=23)
    assert tokens.verify_refresh_token(token).session_id == "sess-1"
    clock.advance(hours=1)
    with pytest.raises(TokenInvalidError):
        tokens.verify_refresh_token(token)


def test_refresh_and_access_are_not_interchangeable(tokens):
    access = tokens.issue_access_token(7, "ana@example.com", "user", "sess-1")
    refresh = tokens.issue_refresh_token(7, "sess-1")
    with pytest.raises(TokenInvalidError):
        tokens.verify_refresh_token(access)
    with pytest.raises(TokenInvalidError):
        tokens.verify_access_token(refresh)


@pytest.mark.parametrize("garbage", ["", "not-a-jwt", "a.b.c"])
def test_malformed_token_rejected(tokens, garbage):
    with pytest.raises(TokenInvalidError):
        tokens.verify_access_token(garbage)


def test_token_signed_with_other_secret_rejected(tokens, settings):
    forged = jwt.encode(
        {
            "sub": "7",
            "email": "ana@example.com",
            "role": "admin",
            "sid": "sess-1",
            "type": "access",
            "iss": settings.tokens.issuer,
            "aud": settings.tokens.access_audience,
            "iat": 1714564800,
            "exp": 1714564800 + 900,
            "jti": "forged",
        },
        "x" * 40,
        algorithm="HS256",
    )
    with pytest.raises(TokenInvalidError):
        tokens.verify_access_token(forged)


def test_hash_token_is_sha256_hex():
    digest = hash_token("abc")
    assert digest == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


@pytest.mark.asyncio
async def test_revoke_is_idempotent(tokens, revocation_store):
    token = tokens.issue_access_token(7, "ana@example.com", "user", "sess-1")
    assert not await tokens.is_revoked(token)

    assert await tokens.revoke(token, "logout") is True
    assert await tokens.revoke(token, "rotated") is False
    assert await tokens.is_revoked(token)

    entry = await revocation_store.get(hash_token(token))
    assert entry.reason == "logout"
    assert entry.user_id == 7
    assert entry.session_id == "sess-1"


@pytest.mark.asyncio
async def test_revocation_entry_pruned_after_token_expiry(tokens, clock):
    token = tokens.issue_access_token(7, "ana@example.com", "user", "sess-1")
    await tokens.revoke(token, "logout")
    clock.advance(minutes=16)
    assert not await tokens.is_revoked(token)


@pytest.mark.asyncio
async def test_revoke_undecodable_token_is_noop(tokens):
    assert await tokens.revoke("garbage", "logout") is False


@pytest.mark.asyncio
async def test_revoke_pair_counts_new_entries(tokens):
    access = tokens.issue_access_token(7, "ana@example.com", "user", "sess-1")
    refresh = tokens.issue_refresh_token(7, "sess-1")

    assert await tokens.revoke_pair(access, refresh, "logout") == 2
    assert await tokens.is_revoked(access)
    assert await tokens.is_revoked(refresh)
    assert await tokens.revoke_pair(access, None, "logout") == 0
