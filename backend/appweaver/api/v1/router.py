from fastapi import APIRouter
from appweaver.api.v1.endpoints import health, tool_batches

api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(tool_batches.router)
