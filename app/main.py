import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.realtime.sse_pubsub import InMemoryPublisher, RedisPublisher
from app.routers.connections import router as connections_router
from app.routers.locations import router as locations_router
from app.routers.streams import router as streams_router
from app.services.location_cache import LocationCache
from app.services.location_tracker import LocationTracker
from app.services.staleness_cleanup import StalenessCleanupScheduler
from app.utils.logging import setup_logging

logger = logging.getLogger(__name__)

# "memory" runs without Redis (events stay in-process, SSE streams stay empty)
REALTIME_BACKEND = os.getenv("REALTIME_BACKEND", "redis")


def _run_alembic_upgrade() -> None:
    """Apply DB migrations on startup."""
    from alembic import command
    from alembic.config import Config

    root = Path(__file__).resolve().parent.parent
    cfg = Config(str(root / "alembic.ini"))
    command.upgrade(cfg, "head")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    try:
        await asyncio.to_thread(_run_alembic_upgrade)
    except Exception:
        # app still boots without a database (e.g. local run without PostgreSQL)
        logger.exception("Alembic upgrade failed")

    cache = LocationCache()
    publisher = InMemoryPublisher() if REALTIME_BACKEND == "memory" else RedisPublisher()
    app.state.tracker = LocationTracker(cache, publisher)
    sweeper = StalenessCleanupScheduler(cache)
    sweeper.start()
    try:
        yield
    finally:
        await sweeper.stop()


app = FastAPI(
    title="Group Location Tracker API",
    description="Real-time member locations and bus station / hotel waypoint resolution for groups",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(locations_router)
app.include_router(connections_router)
app.include_router(streams_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["Health"])
async def health_check() -> dict:
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
