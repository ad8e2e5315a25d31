import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from inbound.config import settings
from inbound.middleware.exceptions import register_exception_handlers
from inbound.routers import exceptions, health, shipments
from inbound.services.alerts import close_redis

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("inbound")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Release the shared Redis connection on shutdown."""
    logger.info("Inbound receiving service starting (%s)", settings.environment)
    yield
    await close_redis()


app = FastAPI(
    title="Inbound Receiving",
    description="Warehouse inbound receiving workflow: dock intake, confirmation, receiving and close",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(shipments.router, prefix="/api/shipments", tags=["shipments"])
app.include_router(exceptions.router, prefix="/api/shipments", tags=["exceptions"])
