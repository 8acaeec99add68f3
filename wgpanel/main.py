"""
FastAPI application entrypoint

Boot sequence:
1. Load configuration and initialize the database (failure halts startup)
2. Ensure the administrative user exists
3. Auto-detect the server public key from the interface config file
4. Apply saved settings overrides
5. Re-sync enabled peers onto the live interface
6. Start the rate limiter pruner and hourly database maintenance

Shutdown cancels both background tasks; uvicorn's graceful shutdown
timeout bounds how long in-flight requests may take to finish.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from wgpanel import __version__
from wgpanel.api.deps import get_rate_limiter, get_wireguard_interface
from wgpanel.api.v1.router import api_router
from wgpanel.config import Config, get_config
from wgpanel.db import base as db_base
from wgpanel.logging_config import configure_logging
from wgpanel.networking.wireguard_keys import load_server_public_key
from wgpanel.security.credential_store import CredentialStore
from wgpanel.security.token_service import TokenService
from wgpanel.services.maintenance_service import MaintenanceService
from wgpanel.services.peer_registry import PeerRegistry
from wgpanel.services.settings_service import (
    ALLOWED_IPS_KEY,
    DNS_KEY,
    SettingsService,
)

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'self'; img-src 'self' data:",
}


def bootstrap(config: Config) -> None:
    """
    Synchronous startup work before the server accepts requests

    Args:
        config: Loaded configuration (mutated with auto-detected values)

    Raises:
        sqlalchemy.exc.OperationalError: If the database cannot be opened
    """
    db_base.configure_engine(config.database.url)
    db_base.init_db()
    logger.info(f"Database initialized at {config.database.path}")

    db = db_base.SessionLocal()
    try:
        TokenService(
            store=CredentialStore(db),
            jwt_config=config.jwt,
            bcrypt_cost=config.security.bcrypt_cost,
        ).ensure_admin_user(config.admin.username, config.admin.password)

        _autodetect_server_key(config)
        _apply_saved_settings(config, SettingsService(db, config.wireguard))

        try:
            peers = PeerRegistry(db).list()
            get_wireguard_interface().sync_peers(peers)
        except Exception as e:
            logger.warning(f"Failed to sync peers to interface: {e}")
    finally:
        db.close()


def _autodetect_server_key(config: Config) -> None:
    wg = config.wireguard
    if wg.server_public_key:
        return

    public_key = load_server_public_key(wg.config_path)
    if public_key:
        wg.server_public_key = public_key
        logger.info(f"Auto-detected server public key: {public_key[:16]}...")
    else:
        logger.warning(
            f"Server public key not configured and not found in {wg.config_path}; "
            "client profiles will be incomplete"
        )


def _apply_saved_settings(config: Config, settings_service: SettingsService) -> None:
    try:
        stored = settings_service.get_all()
    except Exception as e:
        logger.warning(f"Failed to load saved settings: {e}")
        return

    if stored.get(DNS_KEY):
        config.wireguard.dns = stored[DNS_KEY]
        logger.info(f"Loaded DNS from settings: {config.wireguard.dns}")
    if stored.get(ALLOWED_IPS_KEY):
        config.wireguard.allowed_ips = stored[ALLOWED_IPS_KEY]
        logger.info(f"Loaded AllowedIPs from settings: {config.wireguard.allowed_ips}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = get_config()
    bootstrap(config)

    rate_limiter = get_rate_limiter()
    maintenance = MaintenanceService()
    await rate_limiter.start()
    await maintenance.start()
    logger.info(f"WireGuard Panel started on {config.server.host}:{config.server.port}")

    try:
        yield
    finally:
        logger.info("Shutting down...")
        await maintenance.stop()
        await rate_limiter.stop()
        if db_base.engine is not None:
            db_base.engine.dispose()
        logger.info("Server exited gracefully")


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render errors as {"error": ..., "message": ...}"""
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = {"error": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}"
        for err in exc.errors()
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request body", "message": messages},
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="WireGuard Panel",
        description="Control plane for a WireGuard VPN concentrator",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=".*",
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Requested-With"],
        expose_headers=["Content-Length", "Content-Type", "Content-Disposition"],
        max_age=86400,
    )

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value
        return response

    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.include_router(api_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/api/health")
    async def api_health():
        return {"status": "ok", "version": __version__}

    return app


app = create_app()


def run() -> None:
    """Console entrypoint"""
    configure_logging()
    config = get_config()
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        timeout_graceful_shutdown=config.server.shutdown_grace_seconds,
        log_config=None,
    )


if __name__ == "__main__":
    run()
