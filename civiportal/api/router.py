"""Top-level API router."""

from fastapi import APIRouter

from civiportal.api.routes.admin import router as admin_router
from civiportal.api.routes.dashboards import router as dashboards_router
from civiportal.api.routes.exports import router as exports_router
from civiportal.api.routes.health import router as health_router
from civiportal.api.routes.me import router as me_router
from civiportal.api.routes.settings import router as settings_router
from civiportal.api.routes.uploads import router as uploads_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(me_router)
api_router.include_router(admin_router)
api_router.include_router(settings_router)
api_router.include_router(uploads_router)
api_router.include_router(dashboards_router)
api_router.include_router(exports_router)
