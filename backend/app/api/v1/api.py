"""API v1 router aggregation."""
from fastapi import APIRouter
from app.api.v1.endpoints import generations, monitor, tasks

api_router = APIRouter()

api_router.include_router(generations.router, prefix="/generations", tags=["generations"])
api_router.include_router(tasks.router, prefix="/tasks", tags=["tasks"])
api_router.include_router(monitor.router, prefix="/monitor", tags=["monitor"])
