"""
Settings API Endpoints

Provides:
- GET /api/v1/settings - Effective DNS / AllowedIPs / logging flag and API token
- PUT /api/v1/settings - Update any subset of them, or the admin password

Fields are written independently. The request succeeds as long as at
least one of the requested changes was applied; failures of the others
are logged.
"""

import logging

from fastapi import APIRouter, Depends, status

from wgpanel.api.deps import (
    api_error,
    get_current_user,
    get_settings_service,
    get_token_service,
)
from wgpanel.schemas.auth import MessageResponse
from wgpanel.schemas.settings import SettingsResponse, UpdateSettingsRequest
from wgpanel.security.token_service import (
    BCRYPT_MAX_PASSWORD_BYTES,
    AuthenticatedUser,
    TokenService,
)
from wgpanel.services.settings_service import SettingsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settings", tags=["Settings"])


@router.get("", response_model=SettingsResponse, summary="Get effective settings")
def get_settings(
    current_user: AuthenticatedUser = Depends(get_current_user),
    settings_service: SettingsService = Depends(get_settings_service),
    token_service: TokenService = Depends(get_token_service),
) -> SettingsResponse:
    try:
        effective = settings_service.effective_server_settings()
        user = token_service.store.get_user_by_id(current_user.user_id)
        return SettingsResponse(
            dns=effective.dns,
            allowed_ips=effective.allowed_ips,
            logging_enabled=settings_service.logging_enabled(),
            api_token=user.api_token if user is not None else "",
        )
    except Exception as e:
        logger.error(f"Failed to get settings: {e}", exc_info=True)
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to get settings")


@router.put("", response_model=MessageResponse, summary="Update settings")
def update_settings(
    body: UpdateSettingsRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    settings_service: SettingsService = Depends(get_settings_service),
    token_service: TokenService = Depends(get_token_service),
) -> MessageResponse:
    """
    Apply a partial settings update

    A non-empty admin_password re-hashes the password, re-derives the API
    token and revokes every refresh token of the caller.

    Raises:
        HTTPException: 400 on an invalid password, 500 if every requested
            change failed
    """
    new_password = body.admin_password or None
    if new_password is not None and len(new_password.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            "Invalid request",
            f"admin_password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes",
        )

    requested = sum(
        v is not None for v in (body.dns, body.allowed_ips, body.logging_enabled, new_password)
    )

    try:
        failed = settings_service.update(
            dns=body.dns,
            allowed_ips=body.allowed_ips,
            logging_enabled=body.logging_enabled,
        )
    except Exception as e:
        logger.error(f"Failed to update settings: {e}", exc_info=True)
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to update settings")

    if new_password is not None:
        user = token_service.store.get_user_by_id(current_user.user_id)
        if user is None:
            logger.error(f"Cannot change password: user {current_user.user_id} not found")
            failed.append("admin_password")
        else:
            try:
                token_service.change_password(user, new_password)
            except Exception as e:
                logger.error(f"Failed to update admin password: {e}", exc_info=True)
                failed.append("admin_password")

    if requested and len(failed) == requested:
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to update settings")

    if failed:
        logger.warning(f"Settings partially applied; failed: {', '.join(failed)}")

    return MessageResponse(message="Settings updated")
