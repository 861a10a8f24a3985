import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import httpx
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from models.user import User

logger = logging.getLogger(__name__)
security = HTTPBearer()

# JWKS cache with TTL
_jwks_cache: dict = {"data": None, "expires_at": None}
JWKS_CACHE_TTL = timedelta(hours=1)


class Unauthenticated(Exception):
    """Bearer credential is missing, invalid, or maps to no internal user."""

    pass


class IdentityProviderUnavailable(Unauthenticated):
    """Signing keys could not be fetched and no cached copy exists."""

    pass


async def _get_cached_jwks(jwks_url: str) -> dict:
    """Fetch JWKS with TTL-based caching to avoid hitting the provider on every request."""
    now = datetime.utcnow()

    # Return cached data if still valid
    if _jwks_cache["data"] and _jwks_cache["expires_at"] and now < _jwks_cache["expires_at"]:
        return _jwks_cache["data"]

    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(jwks_url, timeout=10.0)
            response.raise_for_status()
            jwks = response.json()

        _jwks_cache["data"] = jwks
        _jwks_cache["expires_at"] = now + JWKS_CACHE_TTL
        logger.info("JWKS cache refreshed")
        return jwks
    except httpx.HTTPError as e:
        # If fetch fails but we have stale cached data, use it as fallback
        if _jwks_cache["data"]:
            logger.warning("JWKS fetch failed, using stale cache: %s", e)
            return _jwks_cache["data"]
        raise


@dataclass
class AuthContext:
    """Verified identity-provider claims for an HTTP request."""

    user_id: str
    email: str = ""
    name: str = ""
    picture: str = ""


@dataclass
class ChatIdentity:
    """Identity attached to a chat connection for its whole lifetime.

    user_id is the internal users.id, not the identity-provider subject.
    """

    user_id: str
    email: str = ""
    name: str = ""
    picture: Optional[str] = None


def _find_rsa_key(jwks: dict, kid: str) -> dict | None:
    """Find RSA key in JWKS by key ID."""
    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return {
                "kty": key["kty"],
                "kid": key["kid"],
                "use": key.get("use", "sig"),
                "n": key["n"],
                "e": key["e"],
            }
    return None


async def verify_token(token: str) -> dict:
    """
    Verify a bearer credential against the identity provider.

    Returns:
        Decoded JWT claims

    Raises:
        Unauthenticated: Token missing, malformed, expired, or not signed by a known key
        IdentityProviderUnavailable: Signing keys could not be fetched
    """
    if not token:
        raise Unauthenticated("Token missing")

    try:
        jwks = await _get_cached_jwks(settings.IDENTITY_JWKS_URL)

        unverified_header = jwt.get_unverified_header(token)
        rsa_key = _find_rsa_key(jwks, unverified_header["kid"])
        if not rsa_key:
            raise Unauthenticated("Invalid token headers")

        return jwt.decode(
            token,
            rsa_key,
            algorithms=["RS256"],
            audience=settings.IDENTITY_AUDIENCE,
            issuer=settings.IDENTITY_ISSUER,
            options={"verify_aud": settings.IDENTITY_AUDIENCE is not None},
        )

    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token expired")
    except jwt.JWTClaimsError:
        raise Unauthenticated("Invalid claims")
    except httpx.HTTPError as e:
        logger.error("Failed to fetch JWKS: %s", e)
        raise IdentityProviderUnavailable("Authentication service unavailable")
    except Unauthenticated:
        raise
    except Exception as e:
        logger.error("JWT validation error: %s", e)
        raise Unauthenticated("Could not validate credentials")


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> AuthContext:
    """Validate JWT and return AuthContext with identity claims."""
    try:
        payload = await verify_token(credentials.credentials)
    except IdentityProviderUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Unauthenticated as e:
        raise HTTPException(status_code=401, detail=str(e))

    return AuthContext(
        user_id=payload["sub"],
        email=payload.get("email", ""),
        name=payload.get("name", ""),
        picture=payload.get("picture", ""),
    )


async def authenticate_connection(token: Optional[str], db: AsyncSession) -> ChatIdentity:
    """
    Authenticate a chat connection at handshake time.

    Verifies the credential, then resolves its subject to an internal user.

    Raises:
        Unauthenticated: Missing/invalid credential or no matching user record
    """
    if not token:
        raise Unauthenticated("Token missing")

    payload = await verify_token(token)

    result = await db.execute(select(User).where(User.external_id == payload["sub"]))
    user = result.scalar_one_or_none()
    if not user:
        raise Unauthenticated("User not found")

    return ChatIdentity(
        user_id=user.id,
        email=payload.get("email") or user.email or "",
        name=payload.get("name") or user.display_name or "",
        picture=payload.get("picture") or user.profile_picture,
    )
