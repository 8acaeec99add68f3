"""
Peer API Schemas

Pydantic v2 request/response models for the peer management REST API.
The private key is never part of any response.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _strip_name(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError("name must not be blank")
    return v


class CreatePeerRequest(BaseModel):
    """Request body for POST /peers"""
    name: str = Field(..., min_length=1, max_length=255)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _strip_name(v)


class UpdatePeerRequest(BaseModel):
    """Request body for PATCH /peers/{address}"""
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    enabled: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return _strip_name(v)


class PeerResponse(BaseModel):
    """Peer with live statistics (zeroed when unavailable)"""
    id: int
    name: str
    public_key: str
    assigned_ip: str
    enabled: bool
    created_at: datetime
    is_online: bool = False
    latest_handshake: Optional[datetime] = None
    transfer_rx: int = 0
    transfer_tx: int = 0
    endpoint: Optional[str] = None


class ConnectionLogResponse(BaseModel):
    """Recorded peer endpoint"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    peer_id: int
    endpoint: str
    connected_at: datetime
