# app/api/v1/router.py
from fastapi import APIRouter

from .endpoints import health
from app.api.v1.endpoints import builder as builder_endpoints
from app.api.v1.endpoints import schemas as schemas_endpoints

api_router = APIRouter()
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(schemas_endpoints.router)   # /builder/themes
api_router.include_router(builder_endpoints.router)   # /builder/templates, /builder/snapshots
