from fastapi import APIRouter
from hive.api.v1.endpoints import register, selection, updates, connections, errors, health, debug

api_router = APIRouter(prefix="/api/v1")

# Include all endpoint routers
api_router.include_router(register.router)
api_router.include_router(selection.router)
api_router.include_router(updates.router)
api_router.include_router(connections.router)
api_router.include_router(errors.router)
api_router.include_router(health.router)
api_router.include_router(debug.router)
