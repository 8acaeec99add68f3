"""Authentication and request-limiting services for the panel."""

from wgpanel.security.credential_store import CredentialStore
from wgpanel.security.rate_limiter import RateLimiter
from wgpanel.security.token_service import (
    AuthenticatedUser,
    InvalidCredentialsError,
    InvalidTokenError,
    TokenError,
    TokenExpiredError,
    TokenService,
)

__all__ = [
    "CredentialStore",
    "RateLimiter",
    "TokenService",
    "AuthenticatedUser",
    "TokenError",
    "TokenExpiredError",
    "InvalidTokenError",
    "InvalidCredentialsError",
]
