"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sitescout.api.router import api_router
from sitescout.db.engine import create_tables, engine
from sitescout.dependencies import runners

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_tables()
    yield
    # Live sessions cannot survive the process; release their engines.
    for session_id, runner in list(runners.items()):
        logger.info("Stopping live inspection %s on shutdown", session_id)
        await runner.stop()
    runners.clear()
    await engine.dispose()


app = FastAPI(
    title="SiteScout",
    description="Live AI site inspection: streaming or polling hazard detection with a compliance hand-off.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(api_router)


@app.get("/health")
async def health():
    return {"ok": True, "live_sessions": len(runners)}
