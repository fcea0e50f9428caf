from __future__ import annotations

import hashlib
import time
from typing import Optional, Tuple, Union

import redis.asyncio as aioredis
from redis import Redis

IDENTITY_PREFIX = "auth:identity:"
TOKEN_PREFIX = "auth:token:"
SESSION_PREFIX = "auth:session:"
IDENTITY_SESSIONS_PREFIX = "auth:identity_sessions:"
LOGIN_FAILURES_PREFIX = "auth:login_failures:"


class RedisCache:
    """Thin Redis wrapper for identities, tokens, sessions, login failures and rate limits.

    Values are opaque strings; serialization is the caller's concern.
    """

    # Refill and spend atomically inside Redis.
    _ALLOWANCE_SCRIPT = """
local bucket = KEYS[1]
local at = tonumber(ARGV[1])
local per_second = tonumber(ARGV[2])
local ceiling = tonumber(ARGV[3])
local spend = tonumber(ARGV[4])

local stored = redis.call('HMGET', bucket, 'allowance', 'at')
local allowance = tonumber(stored[1]) or ceiling
local previous = tonumber(stored[2]) or at

allowance = math.min(ceiling, allowance + math.max(0, at - previous) * per_second)

local granted = 0
local wait = 0
if allowance >= spend then
  allowance = allowance - spend
  granted = 1
else
  wait = math.ceil((spend - allowance) / per_second)
end

redis.call('HSET', bucket, 'allowance', allowance, 'at', at)
redis.call('EXPIRE', bucket, math.max(math.ceil(ceiling / per_second), 1))
return {granted, tostring(allowance), wait}
"""

    # INCR and EXPIRE as one atomic step.
    _LOGIN_FAILURE_SCRIPT = """
local attempts = redis.call('INCR', KEYS[1])
redis.call('EXPIRE', KEYS[1], tonumber(ARGV[1]))
return attempts
"""

    def __init__(self, redis_url: str, *, socket_timeout: float = 2.0):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._spend_allowance = self.client.register_script(self._ALLOWANCE_SCRIPT)
        self._count_login_failure = self.client.register_script(self._LOGIN_FAILURE_SCRIPT)

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        # A short-lived sync client keeps the async client off the startup loop.
        sync_client = Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def close(self) -> None:
        await self.client.aclose()

    # -- authenticated identity + token -----------------------------------

    async def cache_identity(self, email: str, payload: str, ttl_seconds: int) -> None:
        await self.client.set(f"{IDENTITY_PREFIX}{email}", payload, ex=ttl_seconds)

    async def get_identity(self, email: str) -> Optional[str]:
        return await self.client.get(f"{IDENTITY_PREFIX}{email}")

    async def cache_token(self, email: str, token: str, ttl_seconds: int) -> None:
        await self.client.set(f"{TOKEN_PREFIX}{email}", token, ex=ttl_seconds)

    async def get_token(self, email: str) -> Optional[str]:
        return await self.client.get(f"{TOKEN_PREFIX}{email}")

    async def extend_identity(
        self, email: str, identity_ttl_seconds: int, token_ttl_seconds: int
    ) -> bool:
        """Refresh both TTLs; EXPIRE is a no-op on missing keys."""
        pipe = self.client.pipeline(transaction=True)
        pipe.expire(f"{IDENTITY_PREFIX}{email}", identity_ttl_seconds)
        pipe.expire(f"{TOKEN_PREFIX}{email}", token_ttl_seconds)
        identity_extended, _ = await pipe.execute()
        return bool(identity_extended)

    async def evict_identity(self, email: str) -> int:
        # single DEL over both keys so they disappear together
        return int(await self.client.delete(f"{IDENTITY_PREFIX}{email}", f"{TOKEN_PREFIX}{email}"))

    async def evict_all_identities(self) -> int:
        removed = 0
        for prefix in (IDENTITY_PREFIX, TOKEN_PREFIX):
            batch = []
            async for key in self.client.scan_iter(match=f"{prefix}*", count=500):
                batch.append(key)
                if len(batch) >= 500:
                    removed += int(await self.client.delete(*batch))
                    batch = []
            if batch:
                removed += int(await self.client.delete(*batch))
        return removed

    # -- sessions ---------------------------------------------------------

    async def cache_session(self, session_id: str, identity_id: str, ttl_seconds: int) -> None:
        pipe = self.client.pipeline(transaction=True)
        pipe.set(f"{SESSION_PREFIX}{session_id}", identity_id, ex=ttl_seconds)
        # per-identity set for bulk revocation
        pipe.sadd(f"{IDENTITY_SESSIONS_PREFIX}{identity_id}", session_id)
        pipe.expire(f"{IDENTITY_SESSIONS_PREFIX}{identity_id}", ttl_seconds)
        await pipe.execute()

    async def get_session_identity(self, session_id: str) -> Optional[str]:
        return await self.client.get(f"{SESSION_PREFIX}{session_id}")

    async def extend_session(self, session_id: str, ttl_seconds: int) -> bool:
        identity_id = await self.client.get(f"{SESSION_PREFIX}{session_id}")
        if not identity_id:
            return False
        pipe = self.client.pipeline(transaction=True)
        pipe.expire(f"{SESSION_PREFIX}{session_id}", ttl_seconds)
        pipe.expire(f"{IDENTITY_SESSIONS_PREFIX}{identity_id}", ttl_seconds)
        await pipe.execute()
        return True

    async def revoke_identity_sessions(self, identity_id: str) -> int:
        sessions_key = f"{IDENTITY_SESSIONS_PREFIX}{identity_id}"
        session_ids = await self.client.smembers(sessions_key)
        if not session_ids:
            return 0
        pipe = self.client.pipeline(transaction=True)
        for session_id in session_ids:
            pipe.delete(f"{SESSION_PREFIX}{session_id}")
        pipe.delete(sessions_key)
        results = await pipe.execute()
        return sum(int(r) for r in results[:-1])

    async def count_identity_sessions(self, identity_id: str) -> int:
        session_ids = await self.client.smembers(f"{IDENTITY_SESSIONS_PREFIX}{identity_id}")
        if not session_ids:
            return 0
        pipe = self.client.pipeline()
        for session_id in session_ids:
            pipe.exists(f"{SESSION_PREFIX}{session_id}")
        return sum(int(r) for r in await pipe.execute())

    # -- rate limits ------------------------------------------------------

    @staticmethod
    def _bucket_key(key: str) -> str:
        digest = hashlib.sha256(key.encode()).hexdigest()
        return f"auth:rate:{digest}"

    async def check_rate_limit(
        self,
        key: str,
        limit: int,
        window_seconds: int,
        *,
        return_remaining: bool = False,
        cost: int = 1,
    ) -> Union[bool, Tuple[bool, int, int]]:
        """Spend ``cost`` from a bucket of ``limit`` refilled over ``window_seconds``."""
        granted, allowance, wait = await self._spend_allowance(
            keys=[self._bucket_key(key)],
            args=[time.time(), limit / window_seconds, limit, max(1, cost)],
        )
        allowed = int(granted) == 1
        if not return_remaining:
            return allowed
        return allowed, max(0, int(float(allowance))), int(wait or 0)

    # -- login failures ---------------------------------------------------

    async def record_login_failure(self, email: str, window_seconds: int) -> int:
        attempts = await self._count_login_failure(
            keys=[f"{LOGIN_FAILURES_PREFIX}{email}"], args=[max(1, int(window_seconds))]
        )
        return int(attempts)

    async def login_failure_count(self, email: str) -> int:
        value = await self.client.get(f"{LOGIN_FAILURES_PREFIX}{email}")
        return int(value) if value else 0

    async def clear_login_failures(self, email: str) -> None:
        await self.client.delete(f"{LOGIN_FAILURES_PREFIX}{email}")
