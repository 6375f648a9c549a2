"""JWT verification for Supabase access tokens.

HS256 tokens are checked against the project's shared secret; RS256/ES256
tokens are checked against the key published in the Supabase JWKS.
"""

import base64
import time

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from veridicus.core.jwks import JWKKey, JWKSService
from veridicus.schemas.auth import JWTClaims
from veridicus.utils.logging import get_logger

LOGGER = get_logger(__name__)

_REQUIRED_CLAIMS = ["sub", "exp", "iat", "iss"]

_EC_CURVES = {
    "P-256": ec.SECP256R1,
    "P-384": ec.SECP384R1,
    "P-521": ec.SECP521R1,
}


def _b64url_decode(value: str) -> bytes:
    if not value:
        return b""
    padding = -len(value) % 4
    return base64.urlsafe_b64decode(value + "=" * padding)


class JWTVerifier:
    """JWT verifier for Supabase access tokens."""

    def __init__(self, supabase_url: str, jwks_service: JWKSService, jwt_secret: str = ""):
        """Initialize JWT verifier.

        Args:
            supabase_url: Supabase project URL for issuer validation
            jwks_service: Key source for asymmetric tokens
            jwt_secret: Supabase JWT secret for HS256 verification
        """
        self.supabase_url = supabase_url.rstrip("/")
        self.expected_issuer = f"{self.supabase_url}/auth/v1"
        self.jwks_service = jwks_service
        self.jwt_secret = jwt_secret

        LOGGER.info(f"JWT verifier initialized for issuer: {self.expected_issuer}")

    async def verify_token(self, token: str) -> JWTClaims:
        """Verify and decode a Supabase JWT token.

        Raises:
            jwt.InvalidTokenError: If the token is invalid, expired or unverifiable
        """
        try:
            header = jwt.get_unverified_header(token)
            alg = header.get("alg")
            kid = header.get("kid")

            if alg == "HS256":
                if not self.jwt_secret:
                    raise jwt.InvalidTokenError(
                        "HS256 token received but SUPABASE_JWT_SECRET is not configured"
                    )
                key = self.jwt_secret
            elif alg in ("RS256", "ES256"):
                if not kid:
                    raise jwt.InvalidTokenError("JWT header missing 'kid' (key ID)")
                jwk_key = await self.jwks_service.get_key(kid)
                if not jwk_key:
                    raise jwt.InvalidTokenError(f"No matching key found for kid: {kid}")
                key = self._jwk_to_pem(jwk_key)
            else:
                raise jwt.InvalidTokenError(f"Unsupported algorithm: {alg}")

            payload = jwt.decode(
                token,
                key,
                algorithms=[alg],
                audience="authenticated",
                options={"require": _REQUIRED_CLAIMS},
            )

            if payload.get("iss") != self.expected_issuer:
                raise jwt.InvalidIssuerError(f"Invalid issuer: {payload.get('iss')}")

            claims = JWTClaims(**payload)
            LOGGER.debug(f"Successfully verified token for user: {claims.sub}")
            return claims

        except jwt.ExpiredSignatureError as e:
            LOGGER.warning(f"Token expired: {e}")
            raise jwt.InvalidTokenError("Token has expired") from e
        except jwt.InvalidIssuerError as e:
            LOGGER.warning(f"Invalid issuer: {e}")
            raise jwt.InvalidTokenError("Invalid token issuer") from e
        except jwt.InvalidSignatureError as e:
            LOGGER.warning(f"Invalid signature: {e}")
            raise jwt.InvalidTokenError("Invalid token signature") from e
        except jwt.InvalidTokenError as e:
            LOGGER.warning(f"Invalid token: {e}")
            raise
        except Exception as e:
            LOGGER.error(f"Unexpected error during token verification: {e}")
            raise jwt.InvalidTokenError("Token verification failed") from e

    def _jwk_to_pem(self, jwk_key: JWKKey) -> str:
        """Convert a JWK to a PEM public key for PyJWT.

        Raises:
            ValueError: If the key type or curve is unsupported
        """
        if jwk_key.kty == "RSA":
            public_numbers = rsa.RSAPublicNumbers(
                int.from_bytes(_b64url_decode(jwk_key.e), byteorder="big"),
                int.from_bytes(_b64url_decode(jwk_key.n), byteorder="big"),
            )
        elif jwk_key.kty == "EC":
            curve_cls = _EC_CURVES.get(jwk_key.crv or "")
            if curve_cls is None:
                raise ValueError(f"Unsupported curve: {jwk_key.crv}")
            public_numbers = ec.EllipticCurvePublicNumbers(
                x=int.from_bytes(_b64url_decode(jwk_key.x), byteorder="big"),
                y=int.from_bytes(_b64url_decode(jwk_key.y), byteorder="big"),
                curve=curve_cls(),
            )
        else:
            raise ValueError(f"Unsupported key type: {jwk_key.kty}")

        pem = public_numbers.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return pem.decode("utf-8")

    def is_token_expired(self, claims: JWTClaims) -> bool:
        return claims.exp < int(time.time())
