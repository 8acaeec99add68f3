"""
Peer Registry

Durable peer storage and IP address allocation.

Allocation is optimistic: the lowest free host address is picked by
scanning stored rows and the unique constraint on assigned_ip rejects a
lost race at insert time. With a single writer connection the scan and
insert are serialized, so the constraint is the backstop, not the norm.

Host .1 of the subnet is reserved for the concentrator itself.
"""

import ipaddress
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from wgpanel.models.connection_log import ConnectionLog
from wgpanel.models.peer import Peer

logger = logging.getLogger(__name__)

FIRST_HOST = 2
LAST_HOST = 254


class RegistryError(Exception):
    """Base exception for registry errors"""
    pass


class PeerNotFoundError(RegistryError):
    """Raised when no peer matches the lookup key"""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Peer {key} not found")


class AddressSpaceExhaustedError(RegistryError):
    """Raised when every host address in the subnet is assigned"""

    def __init__(self, subnet: str, allocated_count: int):
        self.subnet = subnet
        self.allocated_count = allocated_count
        super().__init__(
            f"No available IP addresses in subnet {subnet}: "
            f"{allocated_count} addresses allocated"
        )


class DuplicatePeerError(RegistryError):
    """Raised when a public key or address is already recorded"""
    pass


class ConnectionLogError(RegistryError):
    """Raised when a connection log row could not be written"""
    pass


class PeerRegistry:
    """
    Keyed peer storage over a SQLAlchemy session

    Attributes:
        db: Database session
    """

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Address allocation
    # ------------------------------------------------------------------

    def allocate_next_address(self, subnet: str) -> str:
        """
        Return the lowest unused host address in [.2, .254]

        Args:
            subnet: Service subnet in CIDR form (e.g. "10.8.0.0/24")

        Returns:
            IPv4 address string

        Raises:
            ValueError: If subnet is not a valid IPv4 network
            AddressSpaceExhaustedError: If no address remains
        """
        try:
            network = ipaddress.IPv4Network(subnet, strict=False)
        except ValueError as e:
            raise ValueError(f"Invalid subnet CIDR: {e}")

        base = int(network.network_address) & 0xFFFFFF00
        used = set(self.db.execute(select(Peer.assigned_ip)).scalars())

        for host in range(FIRST_HOST, LAST_HOST + 1):
            candidate = str(ipaddress.IPv4Address(base + host))
            if candidate not in used:
                return candidate

        raise AddressSpaceExhaustedError(subnet=subnet, allocated_count=len(used))

    # ------------------------------------------------------------------
    # Peer CRUD
    # ------------------------------------------------------------------

    def create(
        self,
        name: str,
        public_key: str,
        private_key: str,
        assigned_ip: str,
        enabled: bool = True,
    ) -> Peer:
        """
        Insert a peer row

        Raises:
            DuplicatePeerError: If public key or address is already taken
        """
        peer = Peer(
            name=name,
            public_key=public_key,
            private_key=private_key,
            assigned_ip=assigned_ip,
            enabled=enabled,
        )
        self.db.add(peer)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"Rejected duplicate peer at {assigned_ip}: {e.orig}")
            raise DuplicatePeerError(
                f"Peer with address {assigned_ip} or the same public key already exists"
            )
        self.db.refresh(peer)
        logger.info(f"Recorded peer {peer.id} ({name}) at {assigned_ip}")
        return peer

    def get_by_id(self, peer_id: int) -> Peer:
        peer = self.db.get(Peer, peer_id)
        if peer is None:
            raise PeerNotFoundError(str(peer_id))
        return peer

    def find_by_address(self, assigned_ip: str) -> Optional[Peer]:
        return self.db.execute(
            select(Peer).where(Peer.assigned_ip == assigned_ip)
        ).scalar_one_or_none()

    def get_by_address(self, assigned_ip: str) -> Peer:
        """
        Raises:
            PeerNotFoundError: If no peer has the address
        """
        peer = self.find_by_address(assigned_ip)
        if peer is None:
            raise PeerNotFoundError(assigned_ip)
        return peer

    def list(self) -> List[Peer]:
        """All peers, newest first"""
        return list(
            self.db.execute(
                select(Peer).order_by(Peer.created_at.desc(), Peer.id.desc())
            ).scalars()
        )

    def update(
        self,
        assigned_ip: str,
        name: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> Peer:
        """
        Apply a rename and/or enabled flag change

        Raises:
            PeerNotFoundError: If no peer has the address
        """
        peer = self.get_by_address(assigned_ip)
        if name is not None:
            peer.name = name
        if enabled is not None:
            peer.enabled = enabled
        self.db.commit()
        self.db.refresh(peer)
        return peer

    def delete_by_address(self, assigned_ip: str) -> None:
        """
        Delete the peer holding an address

        Raises:
            PeerNotFoundError: If zero rows were affected
        """
        result = self.db.execute(
            Peer.__table__.delete().where(Peer.__table__.c.assigned_ip == assigned_ip)
        )
        if result.rowcount == 0:
            self.db.rollback()
            raise PeerNotFoundError(assigned_ip)
        self.db.commit()
        self.db.expire_all()
        logger.info(f"Deleted peer record at {assigned_ip}")

    # ------------------------------------------------------------------
    # Connection logs
    # ------------------------------------------------------------------

    def add_connection_log(self, peer_id: int, endpoint: str) -> bool:
        """
        Record an endpoint unless it matches the last one logged for the peer

        Returns:
            True if a row was written

        Raises:
            ConnectionLogError: If the read or write failed (session rolled back)
        """
        try:
            last_endpoint = self.db.execute(
                select(ConnectionLog.endpoint)
                .where(ConnectionLog.peer_id == peer_id)
                .order_by(ConnectionLog.id.desc())
                .limit(1)
            ).scalar_one_or_none()

            if last_endpoint == endpoint:
                return False

            self.db.add(ConnectionLog(peer_id=peer_id, endpoint=endpoint))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise ConnectionLogError(f"Failed to log connection for peer {peer_id}: {e}") from e

        logger.debug(f"Logged endpoint {endpoint} for peer {peer_id}")
        return True

    def get_connection_logs(self, peer_id: int, limit: int = 100) -> List[ConnectionLog]:
        """Most recent connection logs for a peer, newest first"""
        return list(
            self.db.execute(
                select(ConnectionLog)
                .where(ConnectionLog.peer_id == peer_id)
                .order_by(ConnectionLog.id.desc())
                .limit(limit)
            ).scalars()
        )
