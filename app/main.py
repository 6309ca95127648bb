"""FastAPI application wiring for the WhatsApp queue engine.

This module bootstraps the HTTP API used by attendant dashboards and the
WhatsApp provider callbacks:

- Configures logging, CORS (optional for the dashboard UI), Prometheus
  metrics and rate limiting.
- Installs the tenant middleware that turns bearer tokens into a tenant
  scope, and the handler that maps engine errors to HTTP statuses.
- Mounts the queue, conversation, webhook, event and sync routers.

The engine itself is built lazily by :func:`app.core.runtime.get_runtime`
on the first request and torn down on shutdown.
"""

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .conversations.errors import EngineError
from .conversations.models import Sector
from .conversations.outbound import MAX_TEXT_LENGTH
from .core.config import get_settings
from .core.limiter import limiter
from .core.runtime import shutdown_runtime
from .core.tenant_middleware import TenantContextMiddleware
from .routers import conversations, events, queue, sync, webhooks
from .routers.dependencies import engine_error_handler

load_dotenv()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    logger.info("Shutting down engine runtime")
    shutdown_runtime()


app = FastAPI(title="WhatsApp Queue Engine", version=__version__, lifespan=lifespan)
init_logging(app)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(EngineError, engine_error_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(TenantContextMiddleware)
# Optional CORS for the attendant dashboard
dashboard_origins = os.getenv("DASHBOARD_ORIGINS")
if dashboard_origins:
    origins = [o.strip() for o in dashboard_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
app.include_router(queue.router)
app.include_router(conversations.router)
app.include_router(webhooks.router)
app.include_router(events.router)
app.include_router(sync.router)

# Expose Prometheus metrics
Instrumentator().instrument(app).expose(
    app, include_in_schema=False, endpoint="/api/metrics"
)


@app.get("/api/health")
async def health():
    """Liveness/readiness probe with a minimal JSON body."""
    return {"status": "ok"}


@app.get("/api/version")
async def version():
    """Return version information for the application."""
    return {
        "version": __version__,
        "build_date": __build_date__,
        "commit_sha": __commit_sha__,
    }


@app.get("/api/config")
async def config():
    """Expose settings the dashboard needs to render the queue."""
    settings = get_settings()
    return {
        "sectors": [sector.value for sector in Sector],
        "poll_interval_seconds": settings.notifier_poll_interval_seconds,
        "max_message_length": MAX_TEXT_LENGTH,
    }
