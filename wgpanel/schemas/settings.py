"""
Settings API Schemas
"""

from typing import Optional

from pydantic import BaseModel, Field


class SettingsResponse(BaseModel):
    """Effective settings plus the caller's API credential"""
    dns: str
    allowed_ips: str
    logging_enabled: bool
    api_token: str


class UpdateSettingsRequest(BaseModel):
    """
    Request body for PUT /settings

    Every field is optional; an empty admin_password leaves the
    password unchanged.
    """
    dns: Optional[str] = Field(default=None, max_length=255)
    allowed_ips: Optional[str] = Field(default=None, max_length=1024)
    logging_enabled: Optional[bool] = None
    admin_password: Optional[str] = Field(default=None, max_length=72)
