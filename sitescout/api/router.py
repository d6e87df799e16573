"""Central router that includes all sub-routers."""

from fastapi import APIRouter

from sitescout.api.inspections import router as inspections_router
from sitescout.api.websocket import router as websocket_router

api_router = APIRouter()
api_router.include_router(inspections_router)
api_router.include_router(websocket_router)
