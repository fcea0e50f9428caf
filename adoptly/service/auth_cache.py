from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, Awaitable, Optional, Protocol, TypeVar

from adoptly.logging import get_logger
from adoptly.service.email_validation import normalize_email
from adoptly.storage.models import Identity, identity_from_dict, identity_to_dict

logger = get_logger(__name__)

IDENTITY_TTL_SECONDS = 15 * 60
TOKEN_TTL_SECONDS = 2 * 60 * 60
SESSION_TTL_SECONDS = 30 * 60

T = TypeVar("T")


class AuthCacheBackend(Protocol):
    async def cache_identity(self, email: str, payload: str, ttl_seconds: int) -> None: ...

    async def get_identity(self, email: str) -> Optional[str]: ...

    async def cache_token(self, email: str, token: str, ttl_seconds: int) -> None: ...

    async def get_token(self, email: str) -> Optional[str]: ...

    async def extend_identity(
        self, email: str, identity_ttl_seconds: int, token_ttl_seconds: int
    ) -> bool: ...

    async def evict_identity(self, email: str) -> int: ...

    async def evict_all_identities(self) -> int: ...

    async def cache_session(self, session_id: str, identity_id: str, ttl_seconds: int) -> None: ...

    async def get_session_identity(self, session_id: str) -> Optional[str]: ...

    async def extend_session(self, session_id: str, ttl_seconds: int) -> bool: ...

    async def revoke_identity_sessions(self, identity_id: str) -> int: ...

    async def count_identity_sessions(self, identity_id: str) -> int: ...


class AuthenticationCache:
    """Advisory cache of authenticated identities, issued tokens and sessions.

    Every call is bounded by ``operation_timeout`` and degrades to a miss (or
    a no-op) when the backend fails, so a cache outage only costs a trip to
    the identity store. Nothing read from here is authoritative.
    """

    def __init__(
        self,
        backend: AuthCacheBackend,
        *,
        identity_ttl_seconds: int = IDENTITY_TTL_SECONDS,
        token_ttl_seconds: int = TOKEN_TTL_SECONDS,
        session_ttl_seconds: int = SESSION_TTL_SECONDS,
        operation_timeout: float = 2.0,
    ) -> None:
        self.backend = backend
        self.identity_ttl_seconds = identity_ttl_seconds
        self.token_ttl_seconds = token_ttl_seconds
        self.session_ttl_seconds = session_ttl_seconds
        self.operation_timeout = operation_timeout

    async def _guard(self, operation: str, call: Awaitable[T], default: T, **context: Any) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.operation_timeout)
        except Exception as exc:
            logger.warning(
                "auth_cache_degraded",
                operation=operation,
                error_type=type(exc).__name__,
                error=str(exc),
                **context,
            )
            return default

    # -- identities + tokens ----------------------------------------------

    async def get_authenticated_identity(self, email: str) -> Optional[Identity]:
        key = normalize_email(email)
        raw = await self._guard("get_identity", self.backend.get_identity(key), None)
        if not raw:
            return None
        try:
            return identity_from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("auth_cache_corrupt_identity", email=key, error=str(exc))
            await self.evict(key)
            return None

    async def cache_authenticated_identity(self, identity: Identity) -> None:
        payload = json.dumps(identity_to_dict(identity))
        await self._guard(
            "cache_identity",
            self.backend.cache_identity(identity.email, payload, self.identity_ttl_seconds),
            None,
        )

    async def get_cached_token(self, email: str) -> Optional[str]:
        return await self._guard("get_token", self.backend.get_token(normalize_email(email)), None)

    async def cache_token(self, email: str, token: str) -> None:
        await self._guard(
            "cache_token",
            self.backend.cache_token(normalize_email(email), token, self.token_ttl_seconds),
            None,
        )

    async def extend(self, email: str) -> bool:
        return await self._guard(
            "extend",
            self.backend.extend_identity(
                normalize_email(email), self.identity_ttl_seconds, self.token_ttl_seconds
            ),
            False,
        )

    async def evict(self, email: str) -> int:
        removed = await self._guard("evict", self.backend.evict_identity(normalize_email(email)), 0)
        logger.debug("auth_cache_evicted", email=email, removed=removed)
        return removed

    async def evict_all(self) -> int:
        removed = await self._guard("evict_all", self.backend.evict_all_identities(), 0)
        logger.info("auth_cache_cleared", removed=removed)
        return removed

    # -- sessions ---------------------------------------------------------

    async def create_session(self, identity: Identity) -> str:
        session_id = str(uuid.uuid4())
        await self._guard(
            "cache_session",
            self.backend.cache_session(session_id, identity.id, self.session_ttl_seconds),
            None,
        )
        return session_id

    async def get_session_identity_id(self, session_id: Optional[str]) -> Optional[str]:
        if not session_id:
            return None
        return await self._guard(
            "get_session", self.backend.get_session_identity(session_id), None
        )

    async def extend_session(self, session_id: str) -> bool:
        return await self._guard(
            "extend_session",
            self.backend.extend_session(session_id, self.session_ttl_seconds),
            False,
        )

    async def invalidate_sessions(self, identity_id: str) -> int:
        return await self._guard(
            "revoke_identity_sessions",
            self.backend.revoke_identity_sessions(identity_id),
            0,
            identity_id=identity_id,
        )

    async def active_session_count(self, identity_id: str) -> int:
        return await self._guard(
            "count_sessions", self.backend.count_identity_sessions(identity_id), 0
        )
