"""
WireGuard Networking Package

Key generation, the live interface executor and client profile rendering.
"""

from wgpanel.networking.wireguard_interface import (
    WireGuardInterface,
    PeerStats,
    WireGuardError,
    InvalidPeerInputError,
    InterfaceError,
    validate_ip,
    parse_dump,
)

from wgpanel.networking.wireguard_keys import (
    WireGuardKeyError,
    generate_keypair,
    get_public_key_from_private,
    validate_public_key_format,
)

from wgpanel.networking.client_config import (
    ServerSettings,
    generate_client_config,
    render_qr_png,
)

__all__ = [
    "WireGuardInterface",
    "PeerStats",
    "WireGuardError",
    "InvalidPeerInputError",
    "InterfaceError",
    "validate_ip",
    "parse_dump",
    "WireGuardKeyError",
    "generate_keypair",
    "get_public_key_from_private",
    "validate_public_key_format",
    "ServerSettings",
    "generate_client_config",
    "render_qr_png",
]
