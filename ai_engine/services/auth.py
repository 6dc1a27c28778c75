# =============================================================================
# Auth Service — Bearer Token Validation Against the Identity Provider
# =============================================================================
#
# The web client signs users in with the hosted identity provider and sends
# its access token as `Authorization: Bearer <token>`. We do not verify the
# JWT locally: the provider's user endpoint is the source of truth, so a
# revoked session is rejected immediately.
#
#   GET {identity_url}/auth/v1/user
#   Authorization: Bearer <token>
#   apikey: <identity_api_key>
#
# 200 with an "id" → AuthenticatedUser; anything else → None.
# No FastAPI dependency here; the HTTP mapping lives in api/deps.py.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ai_engine.config import settings

logger = logging.getLogger(__name__)

_IDENTITY_TIMEOUT_SECONDS = 10.0


@dataclass
class AuthenticatedUser:
    """The caller, as reported by the identity provider."""

    id: str
    email: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)


async def fetch_user(
    token: str,
    http_client: httpx.AsyncClient | None = None,
) -> AuthenticatedUser | None:
    """
    Resolve a bearer token to its user.

    Args:
        token: Raw access token (without the "Bearer " prefix).
        http_client: Injected client (tests); a short-lived one otherwise.

    Returns:
        The user, or None when the token is rejected or the identity
        provider cannot be reached.
    """
    url = f"{settings.identity_url.rstrip('/')}/auth/v1/user"
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": settings.identity_api_key,
    }

    try:
        if http_client is not None:
            response = await http_client.get(url, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=_IDENTITY_TIMEOUT_SECONDS) as client:
                response = await client.get(url, headers=headers)
    except httpx.HTTPError as e:
        logger.warning("Identity provider unreachable: %s", e)
        return None

    if response.status_code != 200:
        logger.info("Token rejected by identity provider (%d)", response.status_code)
        return None

    try:
        claims = response.json()
    except ValueError:
        logger.warning("Identity provider returned a non-JSON body")
        return None

    if not isinstance(claims, dict) or not claims.get("id"):
        return None

    return AuthenticatedUser(
        id=str(claims["id"]),
        email=claims.get("email"),
        claims=claims,
    )
