"""
User and Refresh Token ORM Models

One row per administrative identity plus the server-side refresh tokens
issued to it. Multiple live refresh tokens per user are allowed.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from wgpanel.db.base_class import Base


class User(Base):
    """
    Administrative user

    Attributes:
        username: Unique login name
        password_hash: bcrypt hash of the current password
        api_token: Deterministic 43-character credential derived from the password
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    api_token = Column(String(43), nullable=False, default="", index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    refresh_tokens = relationship(
        "RefreshToken",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<User {self.username}>"


class RefreshToken(Base):
    """
    Opaque refresh token with an absolute expiry

    Attributes:
        token: URL-safe base64 of 32 random bytes
        user_id: Owning user
        expires_at: Absolute expiry (UTC)
    """
    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(String(64), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="refresh_tokens")

    def is_expired(self, now: datetime = None) -> bool:
        """
        Check whether the token has passed its absolute expiry

        SQLite drops tzinfo on read, so naive values are treated as UTC.
        """
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now >= expires_at

    def __repr__(self) -> str:
        return f"<RefreshToken user_id={self.user_id} expires_at={self.expires_at}>"
