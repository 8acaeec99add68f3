"""
Authentication API Endpoints

Provides:
- POST /api/v1/auth/login - Password login (rate limited)
- POST /api/v1/auth/refresh - Rotate the refresh cookie, new access token
- POST /api/v1/auth/logout - Revoke the refresh cookie

The refresh token is only ever carried in an HttpOnly, Secure,
SameSite=Strict cookie scoped to /api/v1/auth.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Response, status

from wgpanel.api.deps import api_error, enforce_login_rate_limit, get_token_service
from wgpanel.schemas.auth import LoginRequest, LoginResponse, MessageResponse
from wgpanel.security.token_service import (
    InvalidCredentialsError,
    IssuedSession,
    TokenError,
    TokenExpiredError,
    TokenService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])

REFRESH_COOKIE_NAME = "refresh_token"
REFRESH_COOKIE_PATH = "/api/v1/auth"


def _set_refresh_cookie(response: Response, session: IssuedSession) -> None:
    max_age = int((session.refresh_expires_at - datetime.now(timezone.utc)).total_seconds())
    response.set_cookie(
        key=REFRESH_COOKIE_NAME,
        value=session.refresh_token,
        max_age=max(max_age, 0),
        path=REFRESH_COOKIE_PATH,
        secure=True,
        httponly=True,
        samesite="strict",
    )


def _session_response(session: IssuedSession) -> LoginResponse:
    return LoginResponse(
        access_token=session.access_token,
        expires_in=session.expires_in,
        api_token=session.api_token,
    )


@router.post(
    "/login",
    response_model=LoginResponse,
    status_code=status.HTTP_200_OK,
    summary="Log in with username and password",
    dependencies=[Depends(enforce_login_rate_limit)],
)
def login(
    body: LoginRequest,
    response: Response,
    token_service: TokenService = Depends(get_token_service),
) -> LoginResponse:
    """
    Authenticate and start a session

    Returns the access token and API credential in the body and the
    refresh token as a cookie.

    Raises:
        HTTPException: 401 on bad credentials, 429 when rate limited
    """
    try:
        session = token_service.login(body.username, body.password)
    except InvalidCredentialsError:
        raise api_error(status.HTTP_401_UNAUTHORIZED, "Invalid credentials")
    except Exception as e:
        logger.error(f"Unexpected error during login: {e}", exc_info=True)
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to log in")

    _set_refresh_cookie(response, session)
    return _session_response(session)


@router.post(
    "/refresh",
    response_model=LoginResponse,
    status_code=status.HTTP_200_OK,
    summary="Exchange the refresh cookie for a new access token",
)
def refresh(
    response: Response,
    refresh_token: Optional[str] = Cookie(default=None),
    token_service: TokenService = Depends(get_token_service),
) -> LoginResponse:
    """
    Rotate the refresh token

    The presented refresh token is invalidated; a replacement is set
    as the new cookie.

    Raises:
        HTTPException: 401 if the cookie is missing, unknown, reused or expired
    """
    try:
        session = token_service.rotate_refresh_token(refresh_token)
    except TokenExpiredError as e:
        logger.info(f"Rejected expired refresh token: {e}")
        raise api_error(status.HTTP_401_UNAUTHORIZED, str(e))
    except TokenError as e:
        raise api_error(status.HTTP_401_UNAUTHORIZED, str(e))
    except Exception as e:
        logger.error(f"Unexpected error during token refresh: {e}", exc_info=True)
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to refresh session")

    _set_refresh_cookie(response, session)
    return _session_response(session)


@router.post(
    "/logout",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Revoke the refresh cookie",
)
def logout(
    response: Response,
    refresh_token: Optional[str] = Cookie(default=None),
    token_service: TokenService = Depends(get_token_service),
) -> MessageResponse:
    try:
        token_service.revoke_refresh_token(refresh_token)
    except Exception as e:
        logger.error(f"Failed to revoke refresh token: {e}", exc_info=True)
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to log out")

    response.delete_cookie(
        key=REFRESH_COOKIE_NAME,
        path=REFRESH_COOKIE_PATH,
        secure=True,
        httponly=True,
        samesite="strict",
    )
    return MessageResponse(message="Logged out successfully")
