"""JWT access token validation (ES256).

Tokens are minted by the identity provider; this service only verifies
them.  Production loads the provider's public key from JWT_PUBLIC_KEY.
Dev and test generate an ephemeral EC key pair on import so that local
tooling and the test suite can mint tokens with ``create_access_token``.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from courseflow.core.config import SETTINGS

ALGORITHM = "ES256"
ISSUER = SETTINGS.jwt_issuer
AUDIENCE = SETTINGS.jwt_audience
ACCESS_TOKEN_TTL_MIN = 15

# ---------------------------------------------------------------------------
# Key management
# ---------------------------------------------------------------------------

_private_key: ec.EllipticCurvePrivateKey | None
if SETTINGS.jwt_public_key:
    _private_key = None
    _public_key = serialization.load_pem_public_key(
        SETTINGS.jwt_public_key.encode()
    )
else:
    _private_key = ec.generate_private_key(ec.SECP256R1())
    _public_key = _private_key.public_key()


def create_access_token(
    *,
    sub: str,
    roles: list[str] | None = None,
    ttl_minutes: int = ACCESS_TOKEN_TTL_MIN,
) -> str:
    """Sign an access token with the ephemeral dev/test key.

    Claims: sub, iss, aud, exp, iat, jti, roles.
    """
    if _private_key is None:
        raise RuntimeError("token minting is unavailable when JWT_PUBLIC_KEY is set")
    now = datetime.now(UTC)
    payload = {
        "sub": sub,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "exp": now + timedelta(minutes=ttl_minutes),
        "iat": now,
        "jti": str(uuid.uuid4()),
        "roles": roles or ["student"],
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and claims, return the payload.

    Pins algorithm to ES256 to prevent alg:none and alg-switching attacks.
    Validates exp, iss, and aud automatically via PyJWT options.

    Raises jwt.ExpiredSignatureError, jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        _public_key,  # type: ignore[arg-type]
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=AUDIENCE,
        options={"require": ["sub", "exp", "iat", "jti"]},
    )
