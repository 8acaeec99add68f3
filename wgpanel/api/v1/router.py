"""Version 1 API router"""

from fastapi import APIRouter

from wgpanel.api.v1.endpoints import auth, peers, settings

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth.router)
api_router.include_router(peers.router)
api_router.include_router(settings.router)
