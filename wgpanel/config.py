"""
Application configuration

Settings are read from environment variables with sensible defaults.
Values that are also stored in the settings table (DNS, AllowedIPs) act
as boot defaults and are shadowed by the stored overrides at request time.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_ACCESS_SECRET = "change-me-in-production-access-secret"
DEFAULT_ADMIN_PASSWORD = "changeme123"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer value for {name}: {value!r}")
        return default


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    shutdown_grace_seconds: int = 10


@dataclass
class DatabaseConfig:
    path: str = "./data/wgpanel.db"

    @property
    def url(self) -> str:
        if self.path == ":memory:":
            return "sqlite://"
        return f"sqlite:///{self.path}"


@dataclass
class JWTConfig:
    access_secret: str = DEFAULT_ACCESS_SECRET
    access_expiry_minutes: int = 15
    refresh_expiry_days: int = 7


@dataclass
class WireGuardConfig:
    interface: str = "wg0"
    server_public_key: str = ""
    server_endpoint: str = ""
    dns: str = "1.1.1.1"
    allowed_ips: str = "0.0.0.0/0, ::/0"
    subnet: str = "10.8.0.0/24"
    config_path: str = "/etc/wireguard/wg0.conf"
    listen_port: int = 51820


@dataclass
class SecurityConfig:
    bcrypt_cost: int = 12
    rate_limit_requests: int = 5
    rate_limit_window_seconds: int = 60


@dataclass
class AdminConfig:
    username: str = "admin"
    password: str = DEFAULT_ADMIN_PASSWORD


@dataclass
class Config:
    server: ServerConfig = field(default_factory=ServerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    jwt: JWTConfig = field(default_factory=JWTConfig)
    wireguard: WireGuardConfig = field(default_factory=WireGuardConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    admin: AdminConfig = field(default_factory=AdminConfig)


def load_config() -> Config:
    """
    Build configuration from environment variables

    Returns:
        Populated Config instance
    """
    wg_port = _env_int("WG_PORT", 51820)

    config = Config(
        server=ServerConfig(
            host=os.getenv("SERVER_HOST", "0.0.0.0"),
            port=_env_int("SERVER_PORT", 8080),
            shutdown_grace_seconds=_env_int("SHUTDOWN_GRACE_SECONDS", 10),
        ),
        database=DatabaseConfig(
            path=os.getenv("DATABASE_PATH", "./data/wgpanel.db"),
        ),
        jwt=JWTConfig(
            access_secret=os.getenv("JWT_ACCESS_SECRET", DEFAULT_ACCESS_SECRET),
            access_expiry_minutes=_env_int("JWT_ACCESS_EXPIRY_MINUTES", 15),
            refresh_expiry_days=_env_int("JWT_REFRESH_EXPIRY_DAYS", 7),
        ),
        wireguard=WireGuardConfig(
            interface=os.getenv("WG_INTERFACE", "wg0"),
            server_public_key=os.getenv("WG_SERVER_PUBLIC_KEY", ""),
            server_endpoint=os.getenv("WG_SERVER_ENDPOINT", ""),
            dns=os.getenv("WG_DNS", "1.1.1.1"),
            allowed_ips=os.getenv("WG_ALLOWED_IPS", "0.0.0.0/0, ::/0"),
            subnet=os.getenv("WG_SUBNET", "10.8.0.0/24"),
            config_path=os.getenv("WG_CONFIG_PATH", "/etc/wireguard/wg0.conf"),
            listen_port=wg_port,
        ),
        security=SecurityConfig(
            bcrypt_cost=_env_int("BCRYPT_COST", 12),
            rate_limit_requests=_env_int("RATE_LIMIT_REQUESTS", 5),
            rate_limit_window_seconds=_env_int("RATE_LIMIT_WINDOW_SECONDS", 60),
        ),
        admin=AdminConfig(
            username=os.getenv("ADMIN_USERNAME", "admin"),
            password=os.getenv("ADMIN_PASSWORD", DEFAULT_ADMIN_PASSWORD),
        ),
    )

    if config.jwt.access_secret == DEFAULT_ACCESS_SECRET:
        logger.warning("Using default JWT access secret. Set JWT_ACCESS_SECRET in production!")
    if config.admin.password == DEFAULT_ADMIN_PASSWORD:
        logger.warning("Using default admin password. Change it immediately!")

    return config


_config: Optional[Config] = None


def get_config() -> Config:
    """Process-wide configuration, loaded on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[Config]) -> None:
    """Replace the process-wide configuration (used at startup and in tests)."""
    global _config
    _config = config
