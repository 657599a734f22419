"""
Studio API — creative session orchestrator.

Run locally:
    python -m studio.main
"""

import os
import time
import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI

load_dotenv()

from . import gemini, kie, metrics
from .auth_middleware import UserContextMiddleware
from .creative import storage
from .creative.routes import router as ugc_router
from .creative.session_service import get_session_service
from .creative.store import supabase_configured

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Studio starting up...")
    metrics.set_gauge("start_time", time.time())
    if not supabase_configured():
        logger.warning("Supabase not configured — sessions are kept in memory")
    yield
    logger.info("Studio shutting down...")
    await get_session_service().shutdown()


app = FastAPI(lifespan=lifespan)
app.add_middleware(UserContextMiddleware)
app.include_router(ugc_router)


@app.get("/health")
def health_check():
    """Verify the service is running and which integrations are configured."""
    return {
        "status": "ok",
        "supabase_configured": supabase_configured(),
        "gemini_configured": bool(gemini.GEMINI_API_KEY),
        "kie_configured": bool(kie.KIE_API_KEY),
        "storage_configured": storage.is_configured(),
        "redis_configured": bool(os.environ.get("REDIS_URL")),
    }


@app.get("/metrics")
def metrics_endpoint():
    """Return a snapshot of all studio metrics."""
    return metrics.get_snapshot()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run("studio.main:app", host="0.0.0.0", port=port, reload=True)
