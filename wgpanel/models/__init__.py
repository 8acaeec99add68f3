"""
ORM models

Importing this package registers every table with Base.metadata.
"""

from .peer import Peer
from .user import User, RefreshToken
from .setting import Setting
from .connection_log import ConnectionLog

__all__ = [
    "Peer",
    "User",
    "RefreshToken",
    "Setting",
    "ConnectionLog",
]
