"""
WireGuard Live Interface Manager

Executor over the wg / wg-quick command-line tools. Mutates the live
interface peer set and reads its statistics. Nothing about the live
interface is cached in-process; every call goes to the tool.

Features:
- Add/remove peers with strict input validation before any tool call
- Persist the running configuration after each mutation (wg-quick save)
- Parse 'wg show <iface> dump' into per-peer statistics
- Re-sync enabled registry peers onto the interface at boot

Commands are always executed as discrete argument vectors, never through
a shell.
"""

import logging
import re
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from wgpanel.networking.wireguard_keys import validate_public_key_format

logger = logging.getLogger(__name__)

# A peer counts as online if its last handshake is younger than this.
# Clients use PersistentKeepalive = 25, so this tolerates ~7 missed keepalives.
ONLINE_THRESHOLD_SECONDS = 180

DUMP_PEER_FIELDS = 8

_IP_PATTERN = re.compile(r"(?:[0-9]{1,3}\.){3}[0-9]{1,3}", re.ASCII)


class WireGuardError(Exception):
    """Base exception for WireGuard operations."""
    pass


class InvalidPeerInputError(WireGuardError):
    """Raised when a key or address fails validation before any tool call."""
    pass


class InterfaceError(WireGuardError):
    """Raised when the wg tool reports a failure; carries its diagnostic text."""

    def __init__(self, message: str, stderr: str = ""):
        self.stderr = stderr
        super().__init__(message)


@dataclass
class PeerStats:
    """
    Point-in-time statistics for one live peer.

    Attributes:
        public_key: Peer's WireGuard public key (base64)
        endpoint: Last observed host:port, empty if none
        latest_handshake: Time of the last handshake, None if never
        transfer_rx: Cumulative bytes received from the peer
        transfer_tx: Cumulative bytes sent to the peer
        is_online: Handshake within ONLINE_THRESHOLD_SECONDS
    """
    public_key: str
    endpoint: str = ""
    latest_handshake: Optional[datetime] = None
    transfer_rx: int = 0
    transfer_tx: int = 0
    is_online: bool = False


def validate_ip(address) -> bool:
    """
    Check that a string is a dotted-quad IPv4 address with octets 0-255.

    Args:
        address: Candidate address

    Returns:
        True if valid
    """
    if not isinstance(address, str) or not _IP_PATTERN.fullmatch(address):
        return False
    return all(0 <= int(octet) <= 255 for octet in address.split("."))


def _parse_int(value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def parse_dump(output: str, now: Optional[datetime] = None) -> Dict[str, PeerStats]:
    """
    Parse 'wg show <iface> dump' output.

    The first line describes the interface itself and is skipped. Peer
    lines are tab separated:
    public-key, preshared-key, endpoint, allowed-ips, latest-handshake,
    transfer-rx, transfer-tx, persistent-keepalive.
    Lines with fewer fields are skipped rather than treated as errors.

    Args:
        output: Raw dump text
        now: Reference time for the online check (defaults to now, UTC)

    Returns:
        Mapping of public key to PeerStats
    """
    now = now or datetime.now(timezone.utc)
    stats: Dict[str, PeerStats] = {}

    for index, line in enumerate(output.splitlines()):
        if index == 0 or not line.strip():
            continue

        fields = line.split("\t")
        if len(fields) < DUMP_PEER_FIELDS:
            continue

        public_key = fields[0]
        endpoint = fields[2] if fields[2] != "(none)" else ""

        latest_handshake = None
        handshake_ts = _parse_int(fields[4])
        if handshake_ts > 0:
            latest_handshake = datetime.fromtimestamp(handshake_ts, tz=timezone.utc)

        is_online = (
            latest_handshake is not None
            and (now - latest_handshake).total_seconds() < ONLINE_THRESHOLD_SECONDS
        )

        stats[public_key] = PeerStats(
            public_key=public_key,
            endpoint=endpoint,
            latest_handshake=latest_handshake,
            transfer_rx=_parse_int(fields[5]),
            transfer_tx=_parse_int(fields[6]),
            is_online=is_online,
        )

    return stats


class WireGuardInterface:
    """
    Live WireGuard interface executor.

    Handles:
    - Peer add/remove via 'wg set'
    - Configuration persistence via 'wg-quick save'
    - Statistics via 'wg show <iface> dump'
    """

    def __init__(self, interface_name: str = "wg0", command_timeout: Optional[int] = None):
        """
        Initialize the interface executor.

        Args:
            interface_name: WireGuard interface name (e.g., "wg0")
            command_timeout: Optional hard timeout in seconds for tool calls;
                None leaves the call bounded by the tool itself
        """
        self.interface_name = interface_name
        self.command_timeout = command_timeout

    def add_peer(self, public_key: str, address: str) -> None:
        """
        Add a peer to the live interface and persist the configuration.

        Args:
            public_key: Peer's WireGuard public key (base64)
            address: Peer's IPv4 host address (without prefix)

        Raises:
            InvalidPeerInputError: If key or address is malformed
            InterfaceError: If the tool reports a failure
        """
        self._validate_key(public_key)
        if not validate_ip(address):
            raise InvalidPeerInputError(f"Invalid IP address format: {address!r}")

        logger.info(f"Adding peer {public_key[:16]}... with address {address}")

        returncode, _, stderr = self._execute_command(
            "wg", "set", self.interface_name,
            "peer", public_key,
            "allowed-ips", f"{address}/32",
        )
        if returncode != 0:
            raise InterfaceError(f"failed to add peer: {stderr}", stderr=stderr)

        self.save_config()

    def remove_peer(self, public_key: str) -> None:
        """
        Remove a peer from the live interface and persist the configuration.

        Args:
            public_key: Peer's WireGuard public key (base64)

        Raises:
            InvalidPeerInputError: If the key is malformed
            InterfaceError: If the tool reports a failure
        """
        self._validate_key(public_key)

        logger.info(f"Removing peer {public_key[:16]}...")

        returncode, _, stderr = self._execute_command(
            "wg", "set", self.interface_name,
            "peer", public_key,
            "remove",
        )
        if returncode != 0:
            raise InterfaceError(f"failed to remove peer: {stderr}", stderr=stderr)

        self.save_config()

    def save_config(self) -> None:
        """
        Persist the running interface configuration to its config file.

        Raises:
            InterfaceError: If wg-quick save fails
        """
        returncode, _, stderr = self._execute_command("wg-quick", "save", self.interface_name)
        if returncode != 0:
            raise InterfaceError(f"failed to save configuration: {stderr}", stderr=stderr)

        logger.debug(f"Saved configuration for {self.interface_name}")

    def show_status(self) -> str:
        """
        Human-readable interface status ('wg show <iface>').

        Raises:
            InterfaceError: If the command fails
        """
        returncode, stdout, stderr = self._execute_command("wg", "show", self.interface_name)
        if returncode != 0:
            raise InterfaceError(f"failed to get interface status: {stderr}", stderr=stderr)
        return stdout

    def read_live_stats(self) -> Dict[str, PeerStats]:
        """
        Snapshot of live peer statistics keyed by public key.

        Raises:
            InterfaceError: If the dump command fails
        """
        returncode, stdout, stderr = self._execute_command(
            "wg", "show", self.interface_name, "dump"
        )
        if returncode != 0:
            raise InterfaceError(f"failed to get peer stats: {stderr}", stderr=stderr)

        return parse_dump(stdout)

    def sync_peers(self, peers: Iterable) -> List[str]:
        """
        Add every enabled registry peer to the live interface.

        Per-peer failures are logged and skipped.

        Args:
            peers: Registry peers (objects with name, public_key, assigned_ip, enabled)

        Returns:
            Names of peers that failed to sync
        """
        failed = []
        synced = 0
        for peer in peers:
            if not peer.enabled:
                continue
            try:
                self.add_peer(peer.public_key, peer.assigned_ip)
                synced += 1
            except WireGuardError as e:
                logger.warning(f"Failed to sync peer {peer.name}: {e}")
                failed.append(peer.name)

        logger.info(f"Synced {synced} peers to {self.interface_name} ({len(failed)} failed)")
        return failed

    def _validate_key(self, public_key: str) -> None:
        if not validate_public_key_format(public_key):
            raise InvalidPeerInputError("Invalid public key format")

    def _execute_command(self, *args: str) -> Tuple[int, str, str]:
        """
        Execute a WireGuard tool command.

        Args:
            *args: Command and arguments

        Returns:
            Tuple of (returncode, stdout, stderr)

        Raises:
            InterfaceError: If the tool is missing or times out
        """
        cmd = list(args)

        logger.debug(f"Executing command: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
            )
        except FileNotFoundError:
            raise InterfaceError(f"{cmd[0]} command not found - ensure WireGuard is installed")
        except subprocess.TimeoutExpired:
            raise InterfaceError(f"{cmd[0]} command timed out")

        return result.returncode, result.stdout.strip(), result.stderr.strip()
