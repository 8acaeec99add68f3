"""
WireGuard client profile rendering

Pure functions: the same peer and server settings always produce the
same bytes, which the QR collaborator encodes verbatim.
"""

import io
from dataclasses import dataclass

import qrcode
from qrcode.constants import ERROR_CORRECT_M

PERSISTENT_KEEPALIVE = 25


@dataclass(frozen=True)
class ServerSettings:
    """
    Server-side values that go into every client profile.

    Attributes:
        server_public_key: Concentrator public key (base64)
        server_endpoint: Public host:port of the concentrator
        dns: DNS server(s) pushed to clients
        allowed_ips: Ranges routed through the tunnel
    """
    server_public_key: str
    server_endpoint: str
    dns: str
    allowed_ips: str


def generate_client_config(peer, settings: ServerSettings) -> str:
    """
    Render a wg-quick client profile for a peer.

    Args:
        peer: Object with private_key and assigned_ip
        settings: Current server settings

    Returns:
        Profile text
    """
    lines = [
        "[Interface]",
        f"PrivateKey = {peer.private_key}",
        f"Address = {peer.assigned_ip}/32",
        f"DNS = {settings.dns}",
        "",
        "[Peer]",
        f"PublicKey = {settings.server_public_key}",
        f"Endpoint = {settings.server_endpoint}",
        f"AllowedIPs = {settings.allowed_ips}",
        f"PersistentKeepalive = {PERSISTENT_KEEPALIVE}",
    ]
    return "\n".join(lines) + "\n"


def render_qr_png(text: str, box_size: int = 8, border: int = 2) -> bytes:
    """
    Encode text as a PNG QR code.

    Args:
        text: Payload (normally a client profile)
        box_size: Pixel size of each module
        border: Quiet-zone width in modules

    Returns:
        PNG image bytes
    """
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=box_size, border=border)
    qr.add_data(text)
    qr.make(fit=True)
    img = qr.make_image()

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
