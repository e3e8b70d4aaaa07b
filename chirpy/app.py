from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from chirpy.api.error_handling import register_exception_handlers
from chirpy.api.routes import admin_router, router
from chirpy.logging import get_logger, set_correlation_id
from chirpy.service.runtime import get_runtime

logger = get_logger(__name__)

__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime eagerly so configuration errors fail at startup."""
    runtime = get_runtime()
    logger.info("chirpy_started", platform=runtime.settings.platform.value)
    yield
    try:
        get_runtime().close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Chirpy", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def count_hits(request, call_next):
    """Count API hits on the injected runtime counter (reset via /admin/reset)."""
    if request.url.path.startswith("/api/"):
        get_runtime().hits.increment()
    return await call_next(request)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag the request with X-Request-ID (client supplied or generated)."""
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


register_exception_handlers(app)
app.include_router(router)
app.include_router(admin_router)
