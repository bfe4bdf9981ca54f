"""API v1 router configuration."""

from fastapi import APIRouter

from mbs_catalog.api.v1.endpoints import admin, catalog

api_router = APIRouter()

api_router.include_router(catalog.router, prefix="/catalog", tags=["Catalog"])
api_router.include_router(admin.router, prefix="/admin", tags=["Admin"])

__all__ = ["api_router"]
