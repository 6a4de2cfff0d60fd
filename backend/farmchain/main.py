import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from farmchain.config import settings
from farmchain.exceptions import register_exception_handlers
from farmchain.routers import batches, health
from farmchain.services.lifecycle import get_engine
from farmchain.services.outbox import outbox_loop
from farmchain.utils.cache import close_redis

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("farmchain")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the outbox retry loop on startup, cancel it on shutdown."""
    engine = get_engine()
    task = None
    if engine.dispatcher is not None:
        task = asyncio.create_task(outbox_loop(engine.dispatcher))
        logger.info("Outbox dispatcher started")
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("Outbox dispatcher stopped")
        await close_redis()


app = FastAPI(
    title="FarmChain",
    description="Farm-to-market batch lifecycle and traceability",
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
app.include_router(batches.router, prefix="/api/batches", tags=["batches"])
