# conversai/auth/oidc.py
import time
from typing import Optional

import httpx
import structlog
from jose import jwt, exceptions as jose_errors

logger = structlog.get_logger(__name__)

# Issuer values LinkedIn has been observed to put in id_tokens
LINKEDIN_ISS_ALLOWLIST = {
    "https://www.linkedin.com",
    "https://www.linkedin.com/",
    "https://www.linkedin.com/oauth",
    "https://www.linkedin.com/oauth/",
}

LINKEDIN_JWKS = "https://www.linkedin.com/oauth/openid/jwks"
ALGS = ["RS256"]
JWKS_TTL_SECONDS = 3600

_jwks_cache: Optional[dict] = None
_jwks_cached_at = 0.0


async def _get_jwks(force: bool = False) -> dict:
    global _jwks_cache, _jwks_cached_at
    if force or not _jwks_cache or time.time() - _jwks_cached_at > JWKS_TTL_SECONDS:
        async with httpx.AsyncClient(timeout=10) as client:
            r = await client.get(LINKEDIN_JWKS)
            r.raise_for_status()
        _jwks_cache = r.json()
        _jwks_cached_at = time.time()
        logger.debug("linkedin_jwks_fetched", keys=len(_jwks_cache.get("keys", [])))
    return _jwks_cache


def _find_jwk(kid: str, jwks: dict) -> Optional[dict]:
    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key
    return None


async def decode_linkedin_id_token(id_token: str, audience: Optional[str] = None) -> dict:
    """
    Verify a LinkedIn OpenID id_token against the published JWKS and return its claims.

    Signature, audience (when given) and issuer are checked. 'exp' is not: the token is
    only read once, right after the code exchange. An unknown 'kid' triggers one JWKS
    refetch to pick up rotated keys.
    """
    kid = jwt.get_unverified_header(id_token).get("kid")
    if not kid:
        raise ValueError("ID token header missing 'kid'")

    jwk = _find_jwk(kid, await _get_jwks())
    if jwk is None:
        jwk = _find_jwk(kid, await _get_jwks(force=True))
    if jwk is None:
        raise ValueError(f"No matching JWK for kid={kid}")

    claims = jwt.decode(
        id_token,
        jwk,
        algorithms=ALGS,
        audience=audience,
        options={"verify_aud": audience is not None, "verify_exp": False, "verify_iss": False},
    )

    iss = claims.get("iss")
    if iss not in LINKEDIN_ISS_ALLOWLIST:
        raise jose_errors.JWTClaimsError(f"Invalid issuer: {iss}")
    return claims
