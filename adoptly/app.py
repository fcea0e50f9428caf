from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import FastAPI

from adoptly.api.error_handling import register_exception_handlers
from adoptly.api.routes import router
from adoptly.config import Settings
from adoptly.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

# Fail fast on a missing or weak JWT secret before the app object exists.
_settings = Settings.from_env()

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 3

_cleanup_task: asyncio.Task | None = None


async def _run_state_cleanup(interval_seconds: int) -> None:
    """Periodically drop expired login counters and fallback-cache entries."""
    from adoptly.service.runtime import get_runtime

    while True:
        await asyncio.sleep(interval_seconds)
        try:
            cleaned = get_runtime().auth.cleanup_expired_states()
            if cleaned:
                logger.info("auth_state_cleanup_completed", cleaned=cleaned)
        except Exception as exc:
            logger.error("auth_state_cleanup_failed", error=str(exc))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    global _cleanup_task
    from adoptly.service.runtime import get_runtime

    runtime = get_runtime()
    _cleanup_task = asyncio.create_task(
        _run_state_cleanup(runtime.settings.cleanup_interval_seconds)
    )

    yield

    try:
        if _cleanup_task:
            _cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await _cleanup_task
        await runtime.close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Adoptly Auth", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag each request with a correlation ID for log tracing.

    Taken from the X-Request-ID header when the client sends one, generated
    otherwise, and echoed back in the X-Request-ID response header.
    """
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if request.url.path.startswith("/api/"):
        response.headers.setdefault("Cache-Control", "no-store")
    return response


@app.get("/healthz")
async def health() -> Dict[str, Any]:
    """Report identity store and cache reachability."""
    from adoptly.service.runtime import get_runtime

    async def _run_bounded(label: str, func) -> bool:
        try:
            await asyncio.wait_for(asyncio.to_thread(func), HEALTH_CHECK_TIMEOUT_SECONDS)
            return True
        except asyncio.TimeoutError:
            logger.error(
                "health_check_timeout", component=label, timeout=HEALTH_CHECK_TIMEOUT_SECONDS
            )
        except Exception as exc:
            logger.error("health_check_failed", component=label, error=str(exc))
        return False

    runtime = get_runtime()
    store_ok = await _run_bounded("store", runtime.store.verify_connection)
    cache_ok = await _run_bounded("cache", runtime.cache_backend.verify_connection)
    checks = {
        "store": {"status": "healthy" if store_ok else "unhealthy"},
        # cache is advisory; an outage leaves the overall status healthy
        "cache": {
            "status": "healthy" if cache_ok else "unhealthy",
            "type": type(runtime.cache_backend).__name__,
            "degraded": not cache_ok,
        },
    }
    return {
        "status": "healthy" if store_ok else "unhealthy",
        "checks": checks,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


register_exception_handlers(app)
app.include_router(router)
