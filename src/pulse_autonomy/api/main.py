"""
Pulse Autonomy REST API
HTTP interface for the Autonomy Class Engine and Write-Authority Gate.
"""

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from ..config import Settings
from ..log_setup import configure_logging
from ..runtime import build_runtime
from .deps import check_rate_limit, rate_limiter, state
from .routers import audit, classes, effects, health

logger = logging.getLogger(__name__)


# =============================================================================
# Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the engine on startup unless one was injected."""
    settings = Settings.from_env()
    configure_logging(settings.log_dir)
    state.start_time = time.time()

    built_here = False
    if state.runtime is None:
        state.runtime = build_runtime(settings.db_path, quiet_hours=settings.quiet_hours)
        built_here = True
        logger.info(f"Autonomy engine loaded from {settings.db_path}")

    mode = "DEV" if settings.dev_mode and not settings.api_keys else "STANDARD"
    logger.info(f"Pulse Autonomy API ready (mode={mode})")

    yield

    logger.info("Pulse Autonomy API shutting down")
    if built_here:
        state.runtime.close()
        state.runtime = None


# =============================================================================
# App
# =============================================================================

app = FastAPI(
    title="Pulse Autonomy API",
    description="""
Decide, execute, confirm and revert assistant effects under learned autonomy.

## Authentication

Include your API key in the `X-API-Key` header:
```
curl -H "X-API-Key: your-key-here" http://127.0.0.1:8003/api/v1/classes?owner_id=me
```
    """,
    version=state.version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


# =============================================================================
# CORS
# =============================================================================

CORS_ORIGINS = os.getenv("PULSE_CORS_ORIGINS", "*").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_rate_limit_headers(request: Request, call_next):
    response = await call_next(request)
    if hasattr(request.state, "rate_limit_remaining"):
        response.headers["X-RateLimit-Limit"] = str(rate_limiter.limit)
        response.headers["X-RateLimit-Remaining"] = str(request.state.rate_limit_remaining)
    return response


# =============================================================================
# Routes
# =============================================================================

@app.get("/")
async def root():
    return {
        "name": "Pulse Autonomy API",
        "version": state.version,
        "docs": "/docs",
    }


app.include_router(health.router, tags=["health"])

for module, tag in ((effects, "effects"), (classes, "classes"), (audit, "audit")):
    app.include_router(
        module.router,
        prefix="/api/v1",
        tags=[tag],
        dependencies=[Depends(check_rate_limit)],
    )
