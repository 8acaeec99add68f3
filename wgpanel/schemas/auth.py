"""
Authentication API Schemas
"""

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Request body for POST /auth/login"""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    """Returned by login and refresh; the refresh token travels in a cookie"""
    access_token: str
    expires_in: int = Field(..., description="Access token lifetime in seconds")
    api_token: str


class MessageResponse(BaseModel):
    message: str
