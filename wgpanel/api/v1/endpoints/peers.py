"""
WireGuard Peer Management API Endpoints

Provides:
- POST /api/v1/peers - Provision a new peer
- GET /api/v1/peers - List peers with live statistics
- PATCH /api/v1/peers/{address} - Rename / enable / disable
- DELETE /api/v1/peers/{address} - Remove a peer
- GET /api/v1/peers/{address}/config - Download client profile
- GET /api/v1/peers/{address}/qrcode - Client profile as PNG QR code
- GET /api/v1/peers/{address}/logs - Recent connection endpoints

Peers are addressed by their assigned IPv4 address. All routes require
a bearer credential.
"""

import logging
import re
from typing import List

from fastapi import APIRouter, Depends, Response, status

from wgpanel.api.deps import api_error, get_current_user, get_provisioning_service
from wgpanel.networking.wireguard_interface import InterfaceError, InvalidPeerInputError
from wgpanel.schemas.auth import MessageResponse
from wgpanel.schemas.peer import (
    ConnectionLogResponse,
    CreatePeerRequest,
    PeerResponse,
    UpdatePeerRequest,
)
from wgpanel.services.peer_provisioning_service import (
    PeerProvisioningService,
    PeerStatus,
    ProvisioningFailedError,
)
from wgpanel.services.peer_registry import (
    AddressSpaceExhaustedError,
    DuplicatePeerError,
    PeerNotFoundError,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/peers",
    tags=["Peers"],
    dependencies=[Depends(get_current_user)],
)

_FILENAME_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def _peer_response(peer_status: PeerStatus) -> PeerResponse:
    peer = peer_status.peer
    stats = peer_status.stats
    return PeerResponse(
        id=peer.id,
        name=peer.name,
        public_key=peer.public_key,
        assigned_ip=peer.assigned_ip,
        enabled=peer.enabled,
        created_at=peer.created_at,
        is_online=peer_status.is_online,
        latest_handshake=stats.latest_handshake if stats else None,
        transfer_rx=stats.transfer_rx if stats else 0,
        transfer_tx=stats.transfer_tx if stats else 0,
        endpoint=(stats.endpoint or None) if stats else None,
    )


def _config_filename(name: str) -> str:
    safe = _FILENAME_UNSAFE.sub("_", name).strip("._")
    return f"{safe or 'peer'}.conf"


@router.post(
    "",
    response_model=PeerResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Provision a new peer",
    description="""
    Generate a keypair, allocate the next free address, record the peer
    and add it to the live interface.

    **Errors:**
    - 400: Invalid request
    - 503: Address space exhausted
    - 500: Interface rejected the peer (record rolled back)
    """,
)
def create_peer(
    body: CreatePeerRequest,
    service: PeerProvisioningService = Depends(get_provisioning_service),
) -> PeerResponse:
    try:
        peer = service.create_peer(body.name)
        return _peer_response(PeerStatus(peer=peer))

    except AddressSpaceExhaustedError as e:
        logger.error(f"Address space exhausted: {e}")
        raise api_error(status.HTTP_503_SERVICE_UNAVAILABLE, "Failed to assign IP address", str(e))

    except DuplicatePeerError as e:
        logger.warning(f"Concurrent allocation conflict: {e}")
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to create peer", str(e))

    except ProvisioningFailedError as e:
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to add peer to WireGuard", str(e))

    except Exception as e:
        logger.error(f"Unexpected error during peer creation: {e}", exc_info=True)
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to create peer")


@router.get(
    "",
    response_model=List[PeerResponse],
    summary="List peers with live statistics",
)
def list_peers(
    service: PeerProvisioningService = Depends(get_provisioning_service),
) -> List[PeerResponse]:
    try:
        return [_peer_response(s) for s in service.list_peers()]
    except Exception as e:
        logger.error(f"Error listing peers: {e}", exc_info=True)
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to retrieve peers")


@router.patch(
    "/{address}",
    response_model=PeerResponse,
    summary="Rename, enable or disable a peer",
)
def update_peer(
    address: str,
    body: UpdatePeerRequest,
    service: PeerProvisioningService = Depends(get_provisioning_service),
) -> PeerResponse:
    try:
        peer = service.update_peer(address, name=body.name, enabled=body.enabled)
        return _peer_response(PeerStatus(peer=peer))

    except InvalidPeerInputError as e:
        raise api_error(status.HTTP_400_BAD_REQUEST, str(e))

    except PeerNotFoundError:
        raise api_error(status.HTTP_404_NOT_FOUND, "Peer not found")

    except InterfaceError as e:
        action = "enable" if body.enabled else "disable"
        logger.error(f"Failed to {action} peer {address}: {e}")
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, f"Failed to {action} peer", str(e))

    except Exception as e:
        logger.error(f"Unexpected error updating peer {address}: {e}", exc_info=True)
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to update peer")


@router.delete(
    "/{address}",
    response_model=MessageResponse,
    summary="Remove a peer from the interface and the registry",
)
def delete_peer(
    address: str,
    service: PeerProvisioningService = Depends(get_provisioning_service),
) -> MessageResponse:
    try:
        service.delete_peer(address)
        return MessageResponse(message="Peer deleted successfully")

    except InvalidPeerInputError as e:
        raise api_error(status.HTTP_400_BAD_REQUEST, str(e))

    except PeerNotFoundError:
        raise api_error(status.HTTP_404_NOT_FOUND, "Peer not found")

    except InterfaceError as e:
        logger.error(f"Failed to remove peer {address} from WireGuard: {e}")
        raise api_error(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to remove peer from WireGuard", str(e)
        )

    except Exception as e:
        logger.error(f"Unexpected error deleting peer {address}: {e}", exc_info=True)
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to delete peer")


@router.get(
    "/{address}/config",
    response_class=Response,
    summary="Download the client profile",
    responses={200: {"content": {"text/plain": {}}}},
)
def get_peer_config(
    address: str,
    service: PeerProvisioningService = Depends(get_provisioning_service),
) -> Response:
    try:
        name = service.get_peer_name(address)
        content = service.get_client_config(address)

    except InvalidPeerInputError as e:
        raise api_error(status.HTTP_400_BAD_REQUEST, str(e))

    except PeerNotFoundError:
        raise api_error(status.HTTP_404_NOT_FOUND, "Peer not found")

    except Exception as e:
        logger.error(f"Failed to generate configuration for {address}: {e}", exc_info=True)
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to generate configuration")

    return Response(
        content=content,
        media_type="text/plain",
        headers={"Content-Disposition": f'attachment; filename="{_config_filename(name)}"'},
    )


@router.get(
    "/{address}/qrcode",
    response_class=Response,
    summary="Client profile as a PNG QR code",
    responses={200: {"content": {"image/png": {}}}},
)
def get_peer_qrcode(
    address: str,
    service: PeerProvisioningService = Depends(get_provisioning_service),
) -> Response:
    try:
        png = service.get_qr_code(address)

    except InvalidPeerInputError as e:
        raise api_error(status.HTTP_400_BAD_REQUEST, str(e))

    except PeerNotFoundError:
        raise api_error(status.HTTP_404_NOT_FOUND, "Peer not found")

    except Exception as e:
        logger.error(f"Failed to generate QR code for {address}: {e}", exc_info=True)
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to generate QR code")

    return Response(content=png, media_type="image/png")


@router.get(
    "/{address}/logs",
    response_model=List[ConnectionLogResponse],
    summary="Recent connection endpoints for a peer",
)
def get_peer_logs(
    address: str,
    service: PeerProvisioningService = Depends(get_provisioning_service),
) -> List[ConnectionLogResponse]:
    try:
        logs = service.get_peer_logs(address, limit=100)
        return [ConnectionLogResponse.model_validate(log) for log in logs]

    except InvalidPeerInputError as e:
        raise api_error(status.HTTP_400_BAD_REQUEST, str(e))

    except PeerNotFoundError:
        raise api_error(status.HTTP_404_NOT_FOUND, "Peer not found")

    except Exception as e:
        logger.error(f"Failed to get logs for {address}: {e}", exc_info=True)
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to get logs")
