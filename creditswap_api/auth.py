"""
Authentication for the API.

Two independent checks:
- X-API-Key token (if API_TOKEN is set) guarding admin-mutating endpoints
- Admin wallet check, which issues an AdminCapability that the orchestrator
  requires for admin-only operations

WARNING: the admin wallet check is a plain string comparison against
ADMIN_WALLET_ADDRESS. Anyone who knows the address passes it. Set API_TOKEN
when the API is reachable from outside.
"""

import hmac
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader

from .config import Settings, get_settings
from .errors import Unauthorized

# API key via header only (no query param for security)
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

_ISSUER = object()


@dataclass(frozen=True)
class AdminCapability:
    """Proof that the caller passed the admin check. Only `authorize_admin` creates one."""

    wallet_address: str
    _issuer: object = field(repr=False, compare=False)

    def __post_init__(self) -> None:
        if self._issuer is not _ISSUER:
            raise Unauthorized("AdminCapability must be issued by authorize_admin")


def is_admin(wallet_address: Optional[str], settings: Settings) -> bool:
    """Exact-match comparison against the configured admin wallet."""
    configured = settings.admin_wallet_address
    if not configured or not wallet_address:
        return False
    return hmac.compare_digest(wallet_address.encode("utf-8"), configured.encode("utf-8"))


def authorize_admin(wallet_address: Optional[str], settings: Settings) -> AdminCapability:
    """
    Issue an admin capability.

    Raises:
        Unauthorized: if the wallet is not the configured admin wallet
    """
    if not is_admin(wallet_address, settings):
        raise Unauthorized("Unauthorized - admin only")
    return AdminCapability(wallet_address=wallet_address or "", _issuer=_ISSUER)


async def verify_api_token(
    request: Request,
    api_key: Optional[str] = Depends(api_key_header),
    settings: Settings = Depends(get_settings),
) -> bool:
    """
    Verify API token if configured.

    - If API_TOKEN is not set, authentication is disabled (local development)
    - If API_TOKEN is set, requests must include the token via X-API-Key
    - No query param support: prevents token leakage via logs/referrer

    Raises:
        HTTPException: 401 if authentication fails
    """
    if not settings.api_token:
        return True

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API token required. Provide via X-API-Key header.",
            headers={"WWW-Authenticate": "X-API-Key"},
        )

    if not hmac.compare_digest(api_key.encode("utf-8"), settings.api_token.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API token",
            headers={"WWW-Authenticate": "X-API-Key"},
        )

    return True
