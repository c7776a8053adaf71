from fastapi import APIRouter

from app.interfaces.api.admin import router as admin_router
from app.interfaces.api.auth import router as auth_router
from app.interfaces.api.health import router as health_router
from app.interfaces.api.roles import router as roles_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router)
api_router.include_router(admin_router)
api_router.include_router(roles_router)
