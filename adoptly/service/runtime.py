from __future__ import annotations

import asyncio
import threading
from typing import Optional, Tuple, Union
from urllib.parse import urlparse, urlunparse

from adoptly.config import get_settings, reset_settings_cache
from adoptly.logging import get_logger
from adoptly.service.auth import AuthService
from adoptly.service.auth_cache import AuthenticationCache
from adoptly.storage.memory import MemoryStore
from adoptly.storage.memory_cache import MemoryCache
from adoptly.storage.redis_cache import RedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password in a connection URL before it reaches the logs.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if not parsed.password:
            return url
        netloc = parsed.hostname or ""
        if parsed.port:
            netloc = f"{netloc}:{parsed.port}"
        netloc = f"{parsed.username or ''}:***@{netloc}"
        return urlunparse(
            (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
        )
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            data_dir=self.settings.data_dir,
            test_mode=self.settings.test_mode,
        )

        try:
            self.store = MemoryStore(data_dir=self.settings.data_dir)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.cache_backend: Union[RedisCache, MemoryCache, None] = None
        redis_error: Exception | None = None
        if self.settings.redis_url:
            try:
                backend = RedisCache(
                    self.settings.redis_url,
                    socket_timeout=self.settings.cache_operation_timeout_seconds,
                )
                backend.verify_connection()
                self.cache_backend = backend
            except Exception as exc:
                redis_error = exc

        if self.cache_backend is None:
            if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
                raise RuntimeError(
                    "Redis is required for the authentication cache, sessions and rate limits; "
                    "start Redis or set TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
                ) from redis_error

            fallback_mode = "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
            logger.warning(
                "redis_disabled_fallback",
                redis_url=_mask_url_password(self.settings.redis_url),
                error=str(redis_error) if redis_error else "redis_url_missing",
                message=(
                    f"Running without Redis under {fallback_mode}; cached identities, sessions "
                    "and rate limits are in-memory only."
                ),
                mode=fallback_mode,
            )
            self.cache_backend = MemoryCache()

        self.cache = AuthenticationCache(
            self.cache_backend,
            identity_ttl_seconds=self.settings.identity_cache_ttl_minutes * 60,
            token_ttl_seconds=self.settings.token_ttl_minutes * 60,
            session_ttl_seconds=self.settings.session_ttl_minutes * 60,
            operation_timeout=self.settings.cache_operation_timeout_seconds,
        )
        self.auth = AuthService(self.store, self.cache, self.settings)

        logger.info(
            "runtime_initialized",
            redis_enabled=isinstance(self.cache_backend, RedisCache),
            persistent_store=bool(self.settings.data_dir),
            verify_email_domains=self.settings.verify_email_domains,
        )

    async def close(self) -> None:
        self.auth.email_validator.close()
        if self.cache_backend is not None:
            await self.cache_backend.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Double-checked locking: the unlocked read is the fast path, the locked
    re-check stops two threads from both building a runtime.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None and isinstance(runtime.cache_backend, RedisCache):
            try:
                loop = asyncio.get_running_loop()
                loop.create_task(runtime.cache_backend.close())
            except RuntimeError:
                asyncio.run(runtime.cache_backend.close())

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime


async def check_rate_limit(
    runtime: Runtime,
    key: str,
    limit: int,
    window_seconds: int,
    *,
    return_remaining: bool = False,
    cost: int = 1,
) -> Union[bool, Tuple[bool, int, int]]:
    """Token-bucket rate limit backed by whichever cache the runtime holds.

    Returns ``allowed``, or ``(allowed, remaining, reset_seconds)`` when
    ``return_remaining`` is set. A non-positive ``limit`` disables the check.
    """
    if limit <= 0:
        return (True, limit, 0) if return_remaining else True
    if window_seconds <= 0:
        logger.warning("rate_limit_invalid_window", key=key, window_seconds=window_seconds)
        window_seconds = 60
    try:
        return await runtime.cache_backend.check_rate_limit(
            key, limit, window_seconds, return_remaining=return_remaining, cost=cost
        )
    except Exception as exc:
        # fail open while the limiter backend is unreachable
        logger.warning("rate_limit_check_failed", key=key, error=str(exc))
        return (True, limit, 0) if return_remaining else True
