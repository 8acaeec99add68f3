"""
Peer ORM Model

Authoritative record of a VPN client: identity, key material and the
address assigned to it from the service subnet.
"""

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from wgpanel.db.base_class import Base


class Peer(Base):
    """
    WireGuard peer record

    Invariant: enabled=True means the public key is present in the live
    interface peer set; enabled=False means it is absent.

    Attributes:
        id: Numeric identifier
        name: Mutable display label
        public_key: Curve25519 public key (base64, unique)
        private_key: Curve25519 private key (base64, never returned by the API)
        assigned_ip: IPv4 host address from the configured subnet (unique)
        enabled: Whether the peer is live on the interface
    """
    __tablename__ = "peers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    public_key = Column(String(64), nullable=False, unique=True)
    private_key = Column(String(64), nullable=False)
    assigned_ip = Column(String(15), nullable=False, unique=True, index=True)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    connection_logs = relationship(
        "ConnectionLog",
        back_populates="peer",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Peer {self.name} ({self.assigned_ip}, enabled={self.enabled})>"
