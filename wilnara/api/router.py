"""
API router. Aggregates all route modules.
"""
from fastapi import APIRouter
from wilnara.api.health import router as health_router
from wilnara.api.queue import router as queue_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(queue_router)
