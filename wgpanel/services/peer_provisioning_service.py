"""
WireGuard Peer Provisioning Service

Orchestrates the Peer Registry and the live interface so that peer
create/update/delete/list behave atomically across both stores.

Peer states: Enabled <-> Disabled, either -> Deleted. New peers start
Enabled.

Ordering rules:
- Create: keypair -> allocate address -> insert row -> add to interface.
  If the interface step fails, the row is deleted again.
- Enable/disable: the live interface is changed first; the registry is
  only written after the interface call succeeded.
- Delete: interface removal first, registry delete second. A failed
  removal leaves the row in place.
- List: registry is authoritative, live statistics are best-effort.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from wgpanel.models.connection_log import ConnectionLog
from wgpanel.models.peer import Peer
from wgpanel.networking.client_config import generate_client_config, render_qr_png
from wgpanel.networking.wireguard_interface import (
    InvalidPeerInputError,
    PeerStats,
    WireGuardError,
    WireGuardInterface,
    validate_ip,
)
from wgpanel.networking.wireguard_keys import generate_keypair
from wgpanel.services.peer_registry import PeerRegistry, RegistryError
from wgpanel.services.settings_service import SettingsService

logger = logging.getLogger(__name__)


# ============================================================================
# Custom Exceptions
# ============================================================================

class ProvisioningError(Exception):
    """Base exception for provisioning errors"""
    pass


class ProvisioningFailedError(ProvisioningError):
    """Raised when the live interface rejected a new peer and the row was rolled back"""

    def __init__(self, message: str, rollback_succeeded: bool = True):
        self.rollback_succeeded = rollback_succeeded
        super().__init__(message)


@dataclass
class PeerStatus:
    """
    Registry peer merged with its live statistics

    Stats fields stay at their zero values when the live read failed or
    the peer is not on the interface.
    """
    peer: Peer
    stats: Optional[PeerStats] = None

    @property
    def is_online(self) -> bool:
        return bool(self.stats and self.stats.is_online)


# ============================================================================
# Provisioning Service
# ============================================================================

class PeerProvisioningService:
    """
    Peer lifecycle orchestration

    Attributes:
        registry: Peer registry bound to the request's session
        interface: Live interface executor
        settings: Settings service for client profile values
        subnet: Service subnet for address allocation
    """

    def __init__(
        self,
        registry: PeerRegistry,
        interface: WireGuardInterface,
        settings: SettingsService,
        subnet: str,
    ):
        self.registry = registry
        self.interface = interface
        self.settings = settings
        self.subnet = subnet

    def create_peer(self, name: str) -> Peer:
        """
        Provision a new enabled peer

        Args:
            name: Display label

        Returns:
            The recorded peer, already live on the interface

        Raises:
            AddressSpaceExhaustedError: If the subnet is full (no row written)
            DuplicatePeerError: If a concurrent create won the same address
            ProvisioningFailedError: If the interface rejected the peer
        """
        logger.info(f"Provisioning peer: name={name}")

        private_key, public_key = generate_keypair()
        assigned_ip = self.registry.allocate_next_address(self.subnet)

        peer = self.registry.create(
            name=name,
            public_key=public_key,
            private_key=private_key,
            assigned_ip=assigned_ip,
            enabled=True,
        )

        try:
            self.interface.add_peer(public_key, assigned_ip)
        except WireGuardError as e:
            logger.error(f"Failed to add peer {assigned_ip} to interface: {e}")
            rollback_succeeded = self._rollback_create(assigned_ip)
            raise ProvisioningFailedError(
                f"Failed to add peer to WireGuard: {e}",
                rollback_succeeded=rollback_succeeded,
            )

        logger.info(f"Successfully provisioned peer {peer.id} with IP {assigned_ip}")
        return peer

    def _rollback_create(self, assigned_ip: str) -> bool:
        try:
            self.registry.delete_by_address(assigned_ip)
        except Exception as e:
            # Orphaned row: left for administrative cleanup, never retried here
            logger.error(
                f"Rollback of peer {assigned_ip} failed; registry row is orphaned "
                f"and needs manual cleanup: {e}",
                exc_info=True,
            )
            return False
        logger.info(f"Rolled back registry row for {assigned_ip}")
        return True

    def update_peer(
        self,
        assigned_ip: str,
        name: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> Peer:
        """
        Rename and/or enable/disable a peer

        The interface is only touched when the enabled flag actually
        changes, and the registry is only written once that succeeded.

        Raises:
            InvalidPeerInputError: If the address is malformed
            PeerNotFoundError: If no peer has the address
            InterfaceError: If the interface mutation failed (registry untouched)
        """
        self._require_valid_ip(assigned_ip)
        peer = self.registry.get_by_address(assigned_ip)

        if enabled is not None and enabled != peer.enabled:
            if enabled:
                logger.info(f"Enabling peer {assigned_ip}")
                self.interface.add_peer(peer.public_key, peer.assigned_ip)
            else:
                logger.info(f"Disabling peer {assigned_ip}")
                self.interface.remove_peer(peer.public_key)

        if name is None and enabled is None:
            return peer

        return self.registry.update(assigned_ip, name=name, enabled=enabled)

    def delete_peer(self, assigned_ip: str) -> None:
        """
        Remove a peer from the interface, then from the registry

        Raises:
            InvalidPeerInputError: If the address is malformed
            PeerNotFoundError: If no peer has the address (no interface call)
            InterfaceError: If removal failed (registry row retained)
        """
        self._require_valid_ip(assigned_ip)
        peer = self.registry.get_by_address(assigned_ip)
        peer_id = peer.id

        # Disabled peers are already absent from the interface; removing
        # an absent key is a no-op for wg, so the call is made regardless.
        self.interface.remove_peer(peer.public_key)
        self.registry.delete_by_address(assigned_ip)

        logger.info(f"Deleted peer {peer_id} ({assigned_ip})")

    def list_peers(self) -> List[PeerStatus]:
        """
        All peers with best-effort live statistics

        When connection logging is enabled, online peers with an endpoint
        get a connection-log row (deduplicated against the last one).
        """
        peers = self.registry.list()

        try:
            stats = self.interface.read_live_stats()
        except WireGuardError as e:
            logger.warning(f"Live stats unavailable, reporting registry data only: {e}")
            stats = None

        log_connections = stats is not None and self.settings.logging_enabled()

        result = []
        for peer in peers:
            peer_stats = stats.get(peer.public_key) if stats else None
            if log_connections and peer_stats and peer_stats.is_online and peer_stats.endpoint:
                try:
                    self.registry.add_connection_log(peer.id, peer_stats.endpoint)
                except RegistryError as e:
                    logger.warning(f"Failed to log connection for peer {peer.id}: {e}")
            result.append(PeerStatus(peer=peer, stats=peer_stats))

        return result

    def get_client_config(self, assigned_ip: str) -> str:
        """
        Client profile text for a peer

        Raises:
            InvalidPeerInputError: If the address is malformed
            PeerNotFoundError: If no peer has the address
        """
        self._require_valid_ip(assigned_ip)
        peer = self.registry.get_by_address(assigned_ip)
        return generate_client_config(peer, self.settings.effective_server_settings())

    def get_qr_code(self, assigned_ip: str) -> bytes:
        """PNG QR code of the client profile"""
        return render_qr_png(self.get_client_config(assigned_ip))

    def get_peer_logs(self, assigned_ip: str, limit: int = 100) -> List[ConnectionLog]:
        """
        Raises:
            InvalidPeerInputError: If the address is malformed
            PeerNotFoundError: If no peer has the address
        """
        self._require_valid_ip(assigned_ip)
        peer = self.registry.get_by_address(assigned_ip)
        return self.registry.get_connection_logs(peer.id, limit=limit)

    def get_peer_name(self, assigned_ip: str) -> str:
        self._require_valid_ip(assigned_ip)
        return self.registry.get_by_address(assigned_ip).name

    @staticmethod
    def _require_valid_ip(assigned_ip: str) -> None:
        if not validate_ip(assigned_ip):
            raise InvalidPeerInputError("Invalid IP address format")
