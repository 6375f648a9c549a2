import time
from unittest.mock import AsyncMock, MagicMock

import jwt
import pytest

from veridicus.core.auth import authenticate_token
from veridicus.core.exceptions import AuthenticationError
from veridicus.core.jwt import JWTVerifier

SUPABASE_URL = "https://test-project.supabase.co"
SECRET = "super-secret-jwt-token-with-at-least-32-characters"


def make_token(secret=SECRET, **overrides) -> str:
    now = int(time.time())
    payload = {
        "sub": "4d3c2b1a-0000-4000-8000-00000000beef",
        "email": "investigator@example.com",
        "role": "authenticated",
        "aud": "authenticated",
        "iss": f"{SUPABASE_URL}/auth/v1",
        "iat": now,
        "exp": now + 3600,
    }
    payload.update(overrides)
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def verifier() -> JWTVerifier:
    return JWTVerifier(SUPABASE_URL, MagicMock(), jwt_secret=SECRET)


class TestJWTVerifier:
    @pytest.mark.asyncio
    async def test_valid_hs256_token(self, verifier):
        claims = await verifier.verify_token(make_token())

        assert claims.sub == "4d3c2b1a-0000-4000-8000-00000000beef"
        assert claims.email == "investigator@example.com"

    @pytest.mark.asyncio
    async def test_expired_token(self, verifier):
        token = make_token(iat=int(time.time()) - 7200, exp=int(time.time()) - 3600)

        with pytest.raises(jwt.InvalidTokenError, match="expired"):
            await verifier.verify_token(token)

    @pytest.mark.asyncio
    async def test_wrong_secret(self, verifier):
        with pytest.raises(jwt.InvalidTokenError):
            await verifier.verify_token(make_token(secret="another-secret-of-sufficient-length-123"))

    @pytest.mark.asyncio
    async def test_wrong_issuer(self, verifier):
        with pytest.raises(jwt.InvalidTokenError, match="issuer"):
            await verifier.verify_token(make_token(iss="https://evil.example.com/auth/v1"))

    @pytest.mark.asyncio
    async def test_wrong_audience(self, verifier):
        with pytest.raises(jwt.InvalidTokenError):
            await verifier.verify_token(make_token(aud="anon"))

    @pytest.mark.asyncio
    async def test_asymmetric_token_without_matching_key(self):
        jwks = MagicMock()
        jwks.get_key = AsyncMock(return_value=None)
        verifier = JWTVerifier(SUPABASE_URL, jwks)
        token = make_token()
        # Only the header is inspected before the key lookup
        with pytest.MonkeyPatch.context() as mp:
            mp.setattr(jwt, "get_unverified_header", lambda _: {"alg": "ES256", "kid": "k1"})
            with pytest.raises(jwt.InvalidTokenError, match="No matching key"):
                await verifier.verify_token(token)
        jwks.get_key.assert_awaited_once_with("k1")


@pytest.mark.asyncio
async def test_authenticate_token_maps_failures(verifier):
    with pytest.raises(AuthenticationError):
        await authenticate_token(verifier, "not-a-jwt")

    user = await authenticate_token(verifier, make_token())
    assert user.id == "4d3c2b1a-0000-4000-8000-00000000beef"
