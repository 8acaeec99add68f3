"""
Credential Store

Persistence for administrative users and their refresh tokens. No
authentication logic lives here; see token_service for that.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from wgpanel.models.user import RefreshToken, User

logger = logging.getLogger(__name__)


class CredentialStore:
    """
    User and refresh token storage

    Attributes:
        db: Database session
    """

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, username: str, password_hash: str, api_token: str = "") -> User:
        user = User(username=username, password_hash=password_hash, api_token=api_token)
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"Created user {username}")
        return user

    def user_exists(self, username: str) -> bool:
        return self.get_user_by_username(username) is not None

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self.db.execute(
            select(User).where(User.username == username)
        ).scalar_one_or_none()

    def get_user_by_api_token(self, api_token: str) -> Optional[User]:
        """
        Look up the user owning an API credential

        An empty credential never matches, even though users created
        before their first login carry an empty api_token.
        """
        if not api_token:
            return None
        return self.db.execute(
            select(User).where(User.api_token == api_token)
        ).scalars().first()

    def update_user_api_token(self, user_id: int, api_token: str) -> Optional[User]:
        """Store a new API token and return the refreshed user, or None if unknown"""
        user = self.db.get(User, user_id)
        if user is None:
            return None
        user.api_token = api_token
        self.db.commit()
        self.db.refresh(user)
        return user

    def update_user_password(self, user_id: int, password_hash: str) -> None:
        user = self.db.get(User, user_id)
        if user is None:
            return
        user.password_hash = password_hash
        self.db.commit()
        logger.info(f"Updated password for user {user_id}")

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def save_refresh_token(self, user_id: int, token: str, expires_at: datetime) -> RefreshToken:
        row = RefreshToken(user_id=user_id, token=token, expires_at=expires_at)
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def get_refresh_token(self, token: str) -> Optional[RefreshToken]:
        if not token:
            return None
        return self.db.execute(
            select(RefreshToken).where(RefreshToken.token == token)
        ).scalar_one_or_none()

    def delete_refresh_token(self, token: str) -> int:
        """
        Returns:
            Number of rows deleted (0 or 1)
        """
        result = self.db.execute(delete(RefreshToken).where(RefreshToken.token == token))
        self.db.commit()
        self.db.expire_all()
        return result.rowcount

    def delete_user_refresh_tokens(self, user_id: int) -> int:
        result = self.db.execute(delete(RefreshToken).where(RefreshToken.user_id == user_id))
        self.db.commit()
        self.db.expire_all()
        logger.info(f"Revoked {result.rowcount} refresh tokens for user {user_id}")
        return result.rowcount

    def clean_expired_tokens(self, now: Optional[datetime] = None) -> int:
        """
        Purge refresh tokens past their absolute expiry

        Args:
            now: Reference time (defaults to now, UTC)

        Returns:
            Number of tokens removed
        """
        now = now or datetime.now(timezone.utc)
        result = self.db.execute(delete(RefreshToken).where(RefreshToken.expires_at <= now))
        self.db.commit()
        self.db.expire_all()
        return result.rowcount
