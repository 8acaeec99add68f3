"""
Connection Log ORM Model

Append-only record of endpoints observed for online peers.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from wgpanel.db.base_class import Base


class ConnectionLog(Base):
    """
    Observed peer endpoint

    Attributes:
        peer_id: Peer the endpoint belongs to
        endpoint: host:port reported by the live interface
        connected_at: When the endpoint was first observed
    """
    __tablename__ = "connection_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    peer_id = Column(Integer, ForeignKey("peers.id", ondelete="CASCADE"), nullable=False)
    endpoint = Column(String(64), nullable=False)
    connected_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    peer = relationship("Peer", back_populates="connection_logs")

    __table_args__ = (
        Index("ix_connection_logs_peer_id", "peer_id"),
        Index("ix_connection_logs_connected_at", "connected_at"),
    )

    def __repr__(self) -> str:
        return f"<ConnectionLog peer_id={self.peer_id} endpoint={self.endpoint}>"
