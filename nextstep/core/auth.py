"""
Clerk authentication for the NextStep API.

Handles:
- JWT signature verification (HS256 with CLERK_JWT_KEY for dev/test,
  RS256 against the Clerk JWKS otherwise)
- Identity extraction (sub, email, name) from verified claims
- Test helpers for deterministic testing (no network)
"""
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx
import jwt
from fastapi import Request
from jwt.algorithms import RSAAlgorithm

from nextstep.core.config import settings
from nextstep.core.errors import UnauthorizedError

logger = logging.getLogger("nextstep")

JWKS_TTL_SECONDS = 86400

# JWKS override (tests) and cache keyed by issuer/jwks_url
_jwks_provider_override: Optional[Callable[[str, str], Dict[str, Any]]] = None
_jwks_cache: Dict[str, tuple[float, Dict[str, Any]]] = {}


@dataclass(frozen=True)
class Identity:
    """Verified caller identity."""
    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None


def set_jwks_provider_for_tests(provider: Optional[Callable[[str, str], Dict[str, Any]]]) -> None:
    """Set or clear JWKS provider override for deterministic testing (no network)."""
    global _jwks_provider_override
    _jwks_provider_override = provider
    _jwks_cache.clear()


def _default_fetch_jwks(issuer: str, jwks_url: str) -> Dict[str, Any]:
    response = httpx.get(jwks_url, timeout=5.0)
    response.raise_for_status()
    return response.json()


def get_jwks(issuer: str, jwks_url: Optional[str] = None) -> Dict[str, Any]:
    """Fetch JWKS using override (tests) or default fetcher. Cached per issuer/url."""
    resolved_url = jwks_url or f"{issuer.rstrip('/')}/.well-known/jwks.json"
    cache_key = f"{issuer}|{resolved_url}"

    cached = _jwks_cache.get(cache_key)
    if cached and (time.time() - cached[0]) < JWKS_TTL_SECONDS:
        return cached[1]

    if _jwks_provider_override:
        jwks = _jwks_provider_override(issuer, resolved_url)
    else:
        jwks = _default_fetch_jwks(issuer, resolved_url)

    _jwks_cache[cache_key] = (time.time(), jwks)
    return jwks


def verify_jwt_token(token: str) -> Dict[str, Any]:
    """
    Verify a Clerk session JWT and return its claims.

    Raises jwt.PyJWTError on invalid token.
    """
    secret = settings.CLERK_JWT_KEY
    if secret:
        return jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            options={"verify_signature": True, "verify_exp": True, "verify_aud": False},
        )

    issuer = settings.CLERK_ISSUER
    jwks_url = settings.CLERK_JWKS_URL
    if not issuer and not jwks_url:
        raise jwt.PyJWTError("CLERK_ISSUER or CLERK_JWKS_URL must be configured for RS256 verification")

    try:
        jwks = get_jwks(issuer or "", jwks_url)
    except httpx.HTTPError as e:
        raise jwt.PyJWTError(f"Unable to fetch JWKS: {e}")

    kid = jwt.get_unverified_header(token).get("kid")
    if not kid:
        raise jwt.PyJWTError("Token missing 'kid' in header")

    matching_key = next((key for key in jwks.get("keys", []) if key.get("kid") == kid), None)
    if not matching_key:
        raise jwt.PyJWTError(f"Key ID '{kid}' not found in JWKS")

    public_key = RSAAlgorithm.from_jwk(json.dumps(matching_key))
    return jwt.decode(
        token,
        public_key,
        algorithms=["RS256"],
        audience=settings.CLERK_AUDIENCE,
        issuer=issuer,
        options={
            "verify_signature": True,
            "verify_exp": True,
            "verify_aud": bool(settings.CLERK_AUDIENCE),
            "verify_iss": bool(issuer),
        },
    )


def identity_from_claims(claims: Dict[str, Any]) -> Identity:
    user_id = claims.get("sub")
    if not user_id:
        raise UnauthorizedError("Token has no subject")
    name = claims.get("name")
    if not name:
        parts = [claims.get("first_name"), claims.get("last_name")]
        name = " ".join(p for p in parts if p) or None
    return Identity(user_id=user_id, email=claims.get("email"), display_name=name)


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_current_identity(request: Request) -> Identity:
    """
    FastAPI dependency: verify the bearer token and return the caller identity.

    Raises:
        UnauthorizedError (401): missing, expired or invalid token
    """
    token = _bearer_token(request)
    if not token:
        raise UnauthorizedError("Missing Authorization bearer token")

    try:
        claims = verify_jwt_token(token)
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except jwt.PyJWTError as e:
        logger.debug(f"Invalid token: {e}")
        raise UnauthorizedError("Invalid token")

    identity = identity_from_claims(claims)
    request.state.user_id = identity.user_id
    return identity


# ============================================================================
# Test Helpers (deterministic, no network)
# ============================================================================

def create_test_jwt(
    sub: str = "test_user_123",
    email: Optional[str] = "test@example.com",
    name: Optional[str] = None,
    exp_minutes: int = 60,
    secret: str = "test-clerk-jwt-key-0123456789abcdef",
    algorithm: str = "HS256",
    private_key: Optional[str] = None,
    kid: Optional[str] = None,
    issuer: Optional[str] = None,
    audience: Optional[str] = None,
) -> str:
    """
    Create a test JWT for unit testing.
    Supports HS256 (default) and RS256 (for JWKS-based tests).
    """
    now = int(time.time())
    payload = {
        "sub": sub,
        "iat": now,
        "exp": now + (exp_minutes * 60),
        "iss": issuer or settings.CLERK_ISSUER or "https://test.clerk.accounts.dev",
        "aud": audience or settings.CLERK_AUDIENCE or "test-audience",
    }
    if email:
        payload["email"] = email
    if name:
        payload["name"] = name

    headers = {"kid": kid} if kid else None
    key = private_key if algorithm == "RS256" and private_key else secret
    return jwt.encode(payload, key, algorithm=algorithm, headers=headers)
