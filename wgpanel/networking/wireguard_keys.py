"""
WireGuard keypair generation and validation.

Keys are generated in-process with X25519, the same Curve25519 primitive
the wg tool uses, so key generation never depends on a subprocess.
Keys are exchanged in base64 format as per WireGuard conventions.
"""

import base64
import binascii
import os
import re
from pathlib import Path
from typing import Optional, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

KEY_LENGTH = 32

_PRIVATE_KEY_LINE = re.compile(r"^\s*PrivateKey\s*=\s*(\S+)\s*$", re.MULTILINE)


class WireGuardKeyError(Exception):
    """Custom exception for WireGuard key operations."""
    pass


def clamp_private_key(raw: bytes) -> bytes:
    """
    Clamp a 32-byte scalar into a valid Curve25519 private key.

    Args:
        raw: 32 random bytes

    Returns:
        bytes: Clamped scalar
    """
    if len(raw) != KEY_LENGTH:
        raise WireGuardKeyError(f"Invalid scalar length: expected 32 bytes, got {len(raw)}")
    clamped = bytearray(raw)
    clamped[0] &= 248
    clamped[31] &= 127
    clamped[31] |= 64
    return bytes(clamped)


def _public_bytes(private_key_bytes: bytes) -> bytes:
    private_key_obj = X25519PrivateKey.from_private_bytes(private_key_bytes)
    return private_key_obj.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw
    )


def generate_keypair() -> Tuple[str, str]:
    """
    Generate a new WireGuard keypair using X25519.

    Returns:
        Tuple[str, str]: A tuple containing (private_key, public_key) in base64 format.
                        Both keys are 44 characters long (32 bytes base64 encoded).

    Example:
        >>> private_key, public_key = generate_keypair()
        >>> len(private_key)
        44
        >>> len(public_key)
        44
    """
    private_key_bytes = clamp_private_key(os.urandom(KEY_LENGTH))
    public_key_bytes = _public_bytes(private_key_bytes)

    private_key_b64 = base64.b64encode(private_key_bytes).decode('ascii')
    public_key_b64 = base64.b64encode(public_key_bytes).decode('ascii')

    return private_key_b64, public_key_b64


def _decode_key(key) -> Optional[bytes]:
    if key is None or not isinstance(key, str):
        return None
    try:
        decoded = base64.b64decode(key, validate=True)
    except (binascii.Error, ValueError):
        return None
    if len(decoded) != KEY_LENGTH:
        return None
    return decoded


def get_public_key_from_private(private_key: str) -> str:
    """
    Derive the public key from a private key.

    Args:
        private_key: Base64-encoded X25519 private key

    Returns:
        str: Base64-encoded X25519 public key

    Raises:
        WireGuardKeyError: If the private key is invalid
    """
    decoded = _decode_key(private_key)
    if decoded is None:
        raise WireGuardKeyError("Invalid private key: expected base64 encoding of 32 bytes")

    try:
        public_key_bytes = _public_bytes(decoded)
    except ValueError as e:
        raise WireGuardKeyError(f"Invalid private key: {str(e)}")

    return base64.b64encode(public_key_bytes).decode('ascii')


def validate_public_key_format(public_key) -> bool:
    """
    Validate that a public key matches the WireGuard base64 format.

    The key must be strict base64 (no stray characters) and decode to
    exactly 32 raw bytes.

    Args:
        public_key: Public key to validate (can be None)

    Returns:
        bool: True if valid, False otherwise
    """
    return _decode_key(public_key) is not None


def validate_private_key_format(private_key) -> bool:
    """
    Validate that a private key matches the WireGuard base64 format.

    Args:
        private_key: Private key to validate (can be None)

    Returns:
        bool: True if valid, False otherwise
    """
    decoded = _decode_key(private_key)
    if decoded is None:
        return False
    try:
        X25519PrivateKey.from_private_bytes(decoded)
    except ValueError:
        return False
    return True


def load_server_public_key(config_path: str) -> Optional[str]:
    """
    Derive the server public key from an existing interface config file.

    Used at boot to auto-detect the key when it is not configured.

    Args:
        config_path: Path to the server's wg-quick configuration

    Returns:
        Base64 public key, or None if the file or key is missing
    """
    path = Path(config_path)
    if not path.is_file():
        return None

    try:
        content = path.read_text(encoding='utf-8')
    except OSError:
        return None

    match = _PRIVATE_KEY_LINE.search(content)
    if not match:
        return None

    try:
        return get_public_key_from_private(match.group(1))
    except WireGuardKeyError:
        return None
