from __future__ import annotations

import asyncio
from typing import Awaitable, Protocol, TypeVar

from adoptly.logging import get_logger
from adoptly.service.email_validation import normalize_email
from adoptly.service.errors import ErrorCode, ServerError

logger = get_logger(__name__)

MAX_ATTEMPTS = 5
LOCKOUT_SECONDS = 30 * 60
CAPTCHA_AFTER_ATTEMPTS = 3

T = TypeVar("T")


class LoginFailureBackend(Protocol):
    async def record_login_failure(self, email: str, window_seconds: int) -> int: ...

    async def login_failure_count(self, email: str) -> int: ...

    async def clear_login_failures(self, email: str) -> None: ...


class LoginAttemptThrottle:
    """Counts consecutive failed logins per email and locks the account out.

    Counters live in the cache backend, so every worker sharing one Redis
    sees the same totals. A counter expires ``lockout_seconds`` after its last
    failure, which both ends a lockout and restarts an unfinished streak.

    Unlike the authentication cache this never degrades: a backend that
    cannot answer raises ``SYSTEM_EXTERNAL_SERVICE_ERROR`` (503) rather than
    letting logins through uncounted.
    """

    def __init__(
        self,
        backend: LoginFailureBackend,
        *,
        max_attempts: int = MAX_ATTEMPTS,
        lockout_seconds: int = LOCKOUT_SECONDS,
        captcha_after: int = CAPTCHA_AFTER_ATTEMPTS,
        operation_timeout: float = 2.0,
    ) -> None:
        self.backend = backend
        self.max_attempts = max_attempts
        self.lockout_seconds = int(lockout_seconds)
        self.captcha_after = captcha_after
        self.operation_timeout = operation_timeout

    async def _call(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.operation_timeout)
        except Exception as exc:
            logger.error(
                "login_throttle_unavailable",
                operation=operation,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise ServerError(
                error_code=ErrorCode.SYSTEM_EXTERNAL_SERVICE_ERROR, status_code=503
            ) from exc

    async def record_failed_attempt(self, email: str) -> int:
        """Count one failure and return the new consecutive-failure total."""
        key = normalize_email(email)
        count = await self._call(
            "record_login_failure", self.backend.record_login_failure(key, self.lockout_seconds)
        )
        if count == self.max_attempts:
            logger.warning("account_locked", email=key, attempts=count)
        return count

    async def record_successful_login(self, email: str) -> None:
        key = normalize_email(email)
        await self._call("clear_login_failures", self.backend.clear_login_failures(key))

    async def attempts(self, email: str) -> int:
        key = normalize_email(email)
        return await self._call("login_failure_count", self.backend.login_failure_count(key))

    async def is_blocked(self, email: str) -> bool:
        return await self.attempts(email) >= self.max_attempts

    async def get_remaining_attempts(self, email: str) -> int:
        return max(0, self.max_attempts - await self.attempts(email))

    async def requires_captcha(self, email: str) -> bool:
        return await self.attempts(email) >= self.captcha_after
