"""
Fixtures for HTTP-level tests

The application is built with create_app() and driven through
TestClient without entering the lifespan, so no engine, bootstrap or
background task is started. Dependencies are overridden to use the
in-memory session and the patched interface from the root conftest.
"""

import pytest
from fastapi.testclient import TestClient

from wgpanel.api.deps import get_app_config, get_rate_limiter, get_wireguard_interface
from wgpanel.db.base import get_db
from wgpanel.main import create_app
from wgpanel.security.rate_limiter import RateLimiter


@pytest.fixture
def app(db_session, app_config, wg_interface):
    application = create_app()
    limiter = RateLimiter(requests=5, window_seconds=60)

    application.dependency_overrides[get_db] = lambda: db_session
    application.dependency_overrides[get_app_config] = lambda: app_config
    application.dependency_overrides[get_wireguard_interface] = lambda: wg_interface
    application.dependency_overrides[get_rate_limiter] = lambda: limiter
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def session(token_service, admin_user):
    """A logged-in admin session"""
    return token_service.login("admin", "correct-horse-battery")


@pytest.fixture
def auth_headers(session):
    return {"Authorization": f"Bearer {session.access_token}"}
