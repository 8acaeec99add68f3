"""
Token Service

Password hashing, access/refresh token issuance and bearer validation
for the administrative API.

Three credential kinds:
- Access token: short-lived HS256 JWT, stateless
- Refresh token: opaque random string stored server-side, rotated on use
- API token: deterministic 43-character HMAC of the password, stable
  across restarts until the password changes
"""

import base64
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt

from wgpanel.config import JWTConfig
from wgpanel.models.user import User
from wgpanel.security.credential_store import CredentialStore

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
JWT_ISSUER = "wgpanel"

MIN_BCRYPT_COST = 12
BCRYPT_MAX_PASSWORD_BYTES = 72
REFRESH_TOKEN_BYTES = 32

API_TOKEN_SALT = b"wireguard-panel-api-token-salt-v1"
API_TOKEN_LENGTH = 43


# ============================================================================
# Custom Exceptions
# ============================================================================

class TokenError(Exception):
    """Base exception for authentication errors"""
    pass


class TokenExpiredError(TokenError):
    """Raised when token has expired"""
    pass


class InvalidTokenError(TokenError):
    """Raised when token signature, format or lookup is invalid"""
    pass


class InvalidCredentialsError(TokenError):
    """Raised on login with an unknown user or wrong password"""

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


@dataclass
class AuthenticatedUser:
    """Identity established by a validated bearer credential"""
    user_id: int
    username: str


@dataclass
class IssuedSession:
    """
    Result of a login or refresh

    Attributes:
        access_token: Signed JWT
        expires_in: Access token lifetime in seconds
        refresh_token: New opaque refresh token (for the cookie)
        refresh_expires_at: Absolute refresh token expiry
        api_token: The user's current API credential
    """
    access_token: str
    expires_in: int
    refresh_token: str
    refresh_expires_at: datetime
    api_token: str


# ============================================================================
# Password and credential primitives
# ============================================================================

def hash_password(password: str, cost: int = MIN_BCRYPT_COST) -> str:
    """
    Hash a password with bcrypt

    Args:
        password: Plaintext password
        cost: bcrypt work factor; values below 12 are raised to 12

    Returns:
        bcrypt hash string

    Raises:
        ValueError: If the password is longer than bcrypt's 72-byte input
    """
    encoded = password.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes")

    cost = max(cost, MIN_BCRYPT_COST)
    hashed = bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=cost))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a bcrypt hash; malformed hashes never match"""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def generate_refresh_token() -> str:
    """32 random bytes, URL-safe base64 with padding (44 characters)"""
    return base64.urlsafe_b64encode(secrets.token_bytes(REFRESH_TOKEN_BYTES)).decode("ascii")


def generate_api_token(password: str) -> str:
    """
    Derive the deterministic API credential for a password

    HMAC-SHA256 keyed by a fixed salt, URL-safe base64 without padding,
    43 characters. The same password yields the same credential on every
    instance and across restarts.
    """
    digest = hmac.new(API_TOKEN_SALT, password.encode("utf-8"), hashlib.sha256).digest()
    token = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    return token[:API_TOKEN_LENGTH]


# ============================================================================
# Token Service
# ============================================================================

class TokenService:
    """
    Authentication service

    Attributes:
        store: Credential store bound to the request's session
        jwt_config: Secret and expiry settings
        bcrypt_cost: Work factor for new password hashes
    """

    def __init__(self, store: CredentialStore, jwt_config: JWTConfig, bcrypt_cost: int = MIN_BCRYPT_COST):
        self.store = store
        self.jwt_config = jwt_config
        self.bcrypt_cost = bcrypt_cost

    @property
    def access_expires_in(self) -> int:
        return self.jwt_config.access_expiry_minutes * 60

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def create_access_token(self, user_id: int, username: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "user_id": user_id,
            "username": username,
            "iat": now,
            "exp": now + timedelta(minutes=self.jwt_config.access_expiry_minutes),
            "iss": JWT_ISSUER,
        }
        return jwt.encode(payload, self.jwt_config.access_secret, algorithm=JWT_ALGORITHM)

    def validate_access_token(self, token: str) -> Dict[str, Any]:
        """
        Decode and verify an access token

        Only HS256 is accepted.

        Returns:
            Token claims

        Raises:
            TokenExpiredError: If the token has expired
            InvalidTokenError: If signature, algorithm or claims are invalid
        """
        try:
            payload = jwt.decode(
                token,
                self.jwt_config.access_secret,
                algorithms=[JWT_ALGORITHM],
                issuer=JWT_ISSUER,
                options={"require": ["exp", "iat", "iss"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpiredError(f"Token has expired: {str(e)}")
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError(f"Invalid token: {str(e)}")

        if not isinstance(payload.get("user_id"), int) or not isinstance(payload.get("username"), str):
            raise InvalidTokenError("Invalid token format: missing user claims")

        return payload

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def issue_session(self, user: User) -> IssuedSession:
        """Create an access token and persist a fresh refresh token"""
        access_token = self.create_access_token(user.id, user.username)
        refresh_token = generate_refresh_token()
        expires_at = datetime.now(timezone.utc) + timedelta(days=self.jwt_config.refresh_expiry_days)
        self.store.save_refresh_token(user.id, refresh_token, expires_at)

        return IssuedSession(
            access_token=access_token,
            expires_in=self.access_expires_in,
            refresh_token=refresh_token,
            refresh_expires_at=expires_at,
            api_token=user.api_token or "",
        )

    def login(self, username: str, password: str) -> IssuedSession:
        """
        Authenticate with username and password

        The API credential is recomputed from the password and written
        back if it differs from the stored value.

        Raises:
            InvalidCredentialsError: Unknown user or wrong password (indistinguishable)
        """
        user = self.store.get_user_by_username(username)
        if user is None or not verify_password(password, user.password_hash):
            logger.warning(f"Failed login attempt for user {username!r}")
            raise InvalidCredentialsError()

        api_token = generate_api_token(password)
        if user.api_token != api_token:
            user = self.store.update_user_api_token(user.id, api_token) or user

        logger.info(f"User {username} logged in")
        return self.issue_session(user)

    def rotate_refresh_token(self, refresh_token: Optional[str]) -> IssuedSession:
        """
        Exchange a refresh token for a new session

        The presented token is deleted before the replacement is stored;
        a reused token therefore always fails.

        Raises:
            InvalidTokenError: Missing, unknown or orphaned token
            TokenExpiredError: Token past its expiry (the row is purged)
        """
        if not refresh_token:
            raise InvalidTokenError("Refresh token not found")

        row = self.store.get_refresh_token(refresh_token)
        if row is None:
            raise InvalidTokenError("Invalid refresh token")

        if row.is_expired():
            self.store.delete_refresh_token(refresh_token)
            raise TokenExpiredError("Refresh token expired")

        user = self.store.get_user_by_id(row.user_id)
        if user is None:
            raise InvalidTokenError("User not found")

        self.store.delete_refresh_token(refresh_token)
        return self.issue_session(user)

    def revoke_refresh_token(self, refresh_token: Optional[str]) -> None:
        if refresh_token:
            self.store.delete_refresh_token(refresh_token)

    def change_password(self, user: User, new_password: str) -> str:
        """
        Set a new password

        Re-derives the API credential and revokes every refresh token
        the user holds.

        Returns:
            The new API credential
        """
        self.store.update_user_password(user.id, hash_password(new_password, self.bcrypt_cost))
        api_token = generate_api_token(new_password)
        self.store.update_user_api_token(user.id, api_token)
        self.store.delete_user_refresh_tokens(user.id)
        logger.info(f"Password changed for user {user.username}; sessions revoked")
        return api_token

    # ------------------------------------------------------------------
    # Bearer validation
    # ------------------------------------------------------------------

    def authenticate_bearer(self, token: str) -> AuthenticatedUser:
        """
        Resolve a bearer credential to a user

        Tries the value as an access token first; if that fails and the
        value has the API credential length, looks it up as one.

        Raises:
            InvalidTokenError: Always with the same message on any failure
        """
        if token:
            try:
                claims = self.validate_access_token(token)
                return AuthenticatedUser(user_id=claims["user_id"], username=claims["username"])
            except TokenError:
                pass

            if len(token) == API_TOKEN_LENGTH:
                user = self.store.get_user_by_api_token(token)
                if user is not None:
                    return AuthenticatedUser(user_id=user.id, username=user.username)

        raise InvalidTokenError("Invalid or expired token")

    def ensure_admin_user(self, username: str, password: str) -> bool:
        """
        Create the administrative user if it does not exist yet

        Returns:
            True if a user was created
        """
        if self.store.user_exists(username):
            return False
        self.store.create_user(username, hash_password(password, self.bcrypt_cost))
        logger.info(f"Created admin user: {username}")
        return True
