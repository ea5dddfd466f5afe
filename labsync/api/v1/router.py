from fastapi import APIRouter

from labsync.config.settings import settings
from labsync.modules.materials import materials_router
from labsync.modules.requests import requests_router
from labsync.modules.debts import debts_router
from labsync.modules.admin import admin_router


# Crear router principal de la API v1
api_router = APIRouter()

# ==================== MÓDULOS ====================

api_router.include_router(materials_router)
api_router.include_router(requests_router)
api_router.include_router(debts_router)
api_router.include_router(admin_router)

# ==================== ENDPOINTS RAÍZ ====================

@api_router.get("/")
async def api_root():
    """Root endpoint de la API"""
    return {
        "message": "LabSync API v1",
        "version": settings.version,
        "status": "active",
        "available_endpoints": {
            "materials": "/api/v1/materials",
            "requests": "/api/v1/requests",
            "debts": "/api/v1/debts",
            "admin": "/api/v1/admin"
        }
    }

@api_router.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.version
    }
