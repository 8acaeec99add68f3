"""
API Dependencies

FastAPI dependency providers shared by the v1 endpoints: database
session, configuration, service construction, the login rate limiter
and the bearer-credential gate for protected routes.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from wgpanel.config import Config, get_config
from wgpanel.db.base import get_db
from wgpanel.networking.wireguard_interface import WireGuardInterface
from wgpanel.security.credential_store import CredentialStore
from wgpanel.security.rate_limiter import RateLimiter
from wgpanel.security.token_service import AuthenticatedUser, InvalidTokenError, TokenService
from wgpanel.services.peer_provisioning_service import PeerProvisioningService
from wgpanel.services.peer_registry import PeerRegistry
from wgpanel.services.settings_service import SettingsService

logger = logging.getLogger(__name__)


def api_error(status_code: int, error: str, message: Optional[str] = None) -> HTTPException:
    """Build an HTTPException rendered as {"error": ..., "message": ...}"""
    detail = {"error": error}
    if message:
        detail["message"] = message
    return HTTPException(status_code=status_code, detail=detail)


# ============================================================================
# Singletons
# ============================================================================

_wireguard_interface: Optional[WireGuardInterface] = None
_rate_limiter: Optional[RateLimiter] = None


def get_app_config() -> Config:
    return get_config()


def get_wireguard_interface() -> WireGuardInterface:
    """
    Get or create the live interface executor

    Returns:
        WireGuardInterface for the configured interface
    """
    global _wireguard_interface

    if _wireguard_interface is None:
        _wireguard_interface = WireGuardInterface(interface_name=get_config().wireguard.interface)

    return _wireguard_interface


def get_rate_limiter() -> RateLimiter:
    """
    Get or create the login rate limiter

    Returns:
        RateLimiter sized from the security configuration
    """
    global _rate_limiter

    if _rate_limiter is None:
        security = get_config().security
        _rate_limiter = RateLimiter(
            requests=security.rate_limit_requests,
            window_seconds=security.rate_limit_window_seconds,
        )

    return _rate_limiter


# ============================================================================
# Per-request services
# ============================================================================

def get_token_service(
    db: Session = Depends(get_db),
    config: Config = Depends(get_app_config),
) -> TokenService:
    return TokenService(
        store=CredentialStore(db),
        jwt_config=config.jwt,
        bcrypt_cost=config.security.bcrypt_cost,
    )


def get_settings_service(
    db: Session = Depends(get_db),
    config: Config = Depends(get_app_config),
) -> SettingsService:
    return SettingsService(db, config.wireguard)


def get_provisioning_service(
    db: Session = Depends(get_db),
    config: Config = Depends(get_app_config),
    interface: WireGuardInterface = Depends(get_wireguard_interface),
) -> PeerProvisioningService:
    return PeerProvisioningService(
        registry=PeerRegistry(db),
        interface=interface,
        settings=SettingsService(db, config.wireguard),
        subnet=config.wireguard.subnet,
    )


# ============================================================================
# Request guards
# ============================================================================

def client_address(request: Request) -> str:
    if request.client:
        return request.client.host
    return "unknown"


def enforce_login_rate_limit(
    request: Request,
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> None:
    """
    Raises:
        HTTPException: 429 when the client has exhausted its bucket
    """
    if not limiter.allow(client_address(request)):
        raise api_error(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "Too many requests",
            "Please try again later",
        )


def get_current_user(
    request: Request,
    token_service: TokenService = Depends(get_token_service),
) -> AuthenticatedUser:
    """
    Authenticate the Authorization: Bearer credential

    Accepts an access token or the 43-character API credential.

    Returns:
        AuthenticatedUser for the caller

    Raises:
        HTTPException: 401 on a missing, malformed or invalid credential
    """
    header = request.headers.get("Authorization")
    if not header:
        raise _unauthorized("Authorization header required")

    parts = header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _unauthorized("Invalid authorization format. Use: Bearer <token>")

    token = parts[1]
    if not token:
        raise _unauthorized("Token required")

    try:
        return token_service.authenticate_bearer(token)
    except InvalidTokenError as e:
        raise _unauthorized(str(e))


def _unauthorized(error: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": error},
        headers={"WWW-Authenticate": "Bearer"},
    )
