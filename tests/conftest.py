"""
Pytest configuration and shared fixtures
"""

from unittest.mock import patch

import pytest
from sqlalchemy.orm import sessionmaker

from wgpanel.config import AdminConfig, Config, JWTConfig, SecurityConfig, WireGuardConfig
from wgpanel.db.base import Base, build_engine
from wgpanel.networking.wireguard_interface import WireGuardInterface
from wgpanel.networking.wireguard_keys import generate_keypair
from wgpanel.security.credential_store import CredentialStore
from wgpanel.security.token_service import TokenService
from wgpanel.services.peer_provisioning_service import PeerProvisioningService
from wgpanel.services.peer_registry import PeerRegistry
from wgpanel.services.settings_service import SettingsService

import wgpanel.models  # noqa: F401

SERVER_PRIVATE_KEY, SERVER_PUBLIC_KEY = generate_keypair()

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "correct-horse-battery"


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with all tables created"""
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """Database session bound to the in-memory engine"""
    session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def wg_config():
    """WireGuard defaults used for client profile generation"""
    return WireGuardConfig(
        interface="wg0",
        server_public_key=SERVER_PUBLIC_KEY,
        server_endpoint="vpn.example.com:51820",
        dns="1.1.1.1",
        allowed_ips="0.0.0.0/0, ::/0",
        subnet="10.8.0.0/24",
    )


@pytest.fixture
def jwt_config():
    return JWTConfig(access_secret="test-access-secret", access_expiry_minutes=15, refresh_expiry_days=7)


@pytest.fixture
def app_config(wg_config, jwt_config):
    return Config(
        jwt=jwt_config,
        wireguard=wg_config,
        security=SecurityConfig(bcrypt_cost=12, rate_limit_requests=5, rate_limit_window_seconds=60),
        admin=AdminConfig(username=ADMIN_USERNAME, password=ADMIN_PASSWORD),
    )


@pytest.fixture
def wg_interface():
    """
    Live interface executor with the tool call patched out

    Every command succeeds with empty output unless a test overrides
    wg_interface._execute_command.return_value or side_effect.
    """
    interface = WireGuardInterface(interface_name="wg0")
    with patch.object(interface, "_execute_command", return_value=(0, "", "")):
        yield interface


@pytest.fixture
def registry(db_session):
    return PeerRegistry(db_session)


@pytest.fixture
def settings_service(db_session, wg_config):
    return SettingsService(db_session, wg_config)


@pytest.fixture
def provisioning_service(registry, wg_interface, settings_service, wg_config):
    return PeerProvisioningService(
        registry=registry,
        interface=wg_interface,
        settings=settings_service,
        subnet=wg_config.subnet,
    )


@pytest.fixture
def credential_store(db_session):
    return CredentialStore(db_session)


@pytest.fixture
def token_service(credential_store, jwt_config):
    return TokenService(store=credential_store, jwt_config=jwt_config, bcrypt_cost=12)


@pytest.fixture
def admin_user(token_service, credential_store):
    """The administrative user, created the way startup does it"""
    token_service.ensure_admin_user(ADMIN_USERNAME, ADMIN_PASSWORD)
    return credential_store.get_user_by_username(ADMIN_USERNAME)
