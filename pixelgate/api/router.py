"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from pixelgate.api.track import router as track_router
from pixelgate.api.admin import router as admin_router
from pixelgate.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(track_router)
api_router.include_router(admin_router)
api_router.include_router(health_router)
