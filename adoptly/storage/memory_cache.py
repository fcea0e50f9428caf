from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Optional, Set, Tuple, Union

from adoptly.storage.redis_cache import (
    IDENTITY_PREFIX,
    IDENTITY_SESSIONS_PREFIX,
    SESSION_PREFIX,
    TOKEN_PREFIX,
)


class MemoryCache:
    """Process-local stand-in for :class:`RedisCache` with TTL semantics.

    Used when Redis is unreachable under TEST_MODE or
    ALLOW_REDIS_FALLBACK_DEV. Entries expire lazily on read and in bulk via
    :meth:`purge_expired`. Login-failure counters are partitioned by email
    over ``stripes`` locks, so failures on different emails never contend.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic, stripes: int = 64) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._values: Dict[str, Tuple[str, float]] = {}
        self._sets: Dict[str, Tuple[Set[str], float]] = {}
        # key -> (tokens, last refill, window seconds)
        self._buckets: Dict[str, Tuple[float, float, float]] = {}
        self._failure_locks: List[threading.Lock] = [
            threading.Lock() for _ in range(max(1, stripes))
        ]
        # email -> (count, expires at)
        self._failures: Dict[str, Tuple[int, float]] = {}

    def verify_connection(self) -> None:
        return None

    async def close(self) -> None:
        with self._lock:
            self._values.clear()
            self._sets.clear()
            self._buckets.clear()
        self._failures.clear()

    # -- primitives (call with the lock held) ------------------------------

    def _get(self, key: str) -> Optional[str]:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            self._values.pop(key, None)
            return None
        return value

    def _set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._values[key] = (value, self._clock() + ttl_seconds)

    def _expire(self, key: str, ttl_seconds: int) -> bool:
        value = self._get(key)
        if value is None:
            return False
        self._values[key] = (value, self._clock() + ttl_seconds)
        return True

    def _members(self, key: str) -> Set[str]:
        entry = self._sets.get(key)
        if entry is None:
            return set()
        members, expires_at = entry
        if expires_at <= self._clock():
            self._sets.pop(key, None)
            return set()
        return members

    # -- authenticated identity + token -----------------------------------

    async def cache_identity(self, email: str, payload: str, ttl_seconds: int) -> None:
        with self._lock:
            self._set(f"{IDENTITY_PREFIX}{email}", payload, ttl_seconds)

    async def get_identity(self, email: str) -> Optional[str]:
        with self._lock:
            return self._get(f"{IDENTITY_PREFIX}{email}")

    async def cache_token(self, email: str, token: str, ttl_seconds: int) -> None:
        with self._lock:
            self._set(f"{TOKEN_PREFIX}{email}", token, ttl_seconds)

    async def get_token(self, email: str) -> Optional[str]:
        with self._lock:
            return self._get(f"{TOKEN_PREFIX}{email}")

    async def extend_identity(
        self, email: str, identity_ttl_seconds: int, token_ttl_seconds: int
    ) -> bool:
        with self._lock:
            extended = self._expire(f"{IDENTITY_PREFIX}{email}", identity_ttl_seconds)
            self._expire(f"{TOKEN_PREFIX}{email}", token_ttl_seconds)
            return extended

    async def evict_identity(self, email: str) -> int:
        with self._lock:
            removed = 0
            for key in (f"{IDENTITY_PREFIX}{email}", f"{TOKEN_PREFIX}{email}"):
                if self._values.pop(key, None) is not None:
                    removed += 1
            return removed

    async def evict_all_identities(self) -> int:
        with self._lock:
            doomed = [
                key for key in self._values
                if key.startswith(IDENTITY_PREFIX) or key.startswith(TOKEN_PREFIX)
            ]
            for key in doomed:
                del self._values[key]
            return len(doomed)

    # -- sessions ---------------------------------------------------------

    async def cache_session(self, session_id: str, identity_id: str, ttl_seconds: int) -> None:
        with self._lock:
            self._set(f"{SESSION_PREFIX}{session_id}", identity_id, ttl_seconds)
            sessions_key = f"{IDENTITY_SESSIONS_PREFIX}{identity_id}"
            members = self._members(sessions_key)
            members.add(session_id)
            self._sets[sessions_key] = (members, self._clock() + ttl_seconds)

    async def get_session_identity(self, session_id: str) -> Optional[str]:
        with self._lock:
            return self._get(f"{SESSION_PREFIX}{session_id}")

    async def extend_session(self, session_id: str, ttl_seconds: int) -> bool:
        with self._lock:
            identity_id = self._get(f"{SESSION_PREFIX}{session_id}")
            if identity_id is None:
                return False
            self._expire(f"{SESSION_PREFIX}{session_id}", ttl_seconds)
            sessions_key = f"{IDENTITY_SESSIONS_PREFIX}{identity_id}"
            members = self._members(sessions_key)
            if members:
                self._sets[sessions_key] = (members, self._clock() + ttl_seconds)
            return True

    async def revoke_identity_sessions(self, identity_id: str) -> int:
        with self._lock:
            session_ids = self._members(f"{IDENTITY_SESSIONS_PREFIX}{identity_id}")
            revoked = 0
            for session_id in session_ids:
                if self._get(f"{SESSION_PREFIX}{session_id}") is not None:
                    revoked += 1
                self._values.pop(f"{SESSION_PREFIX}{session_id}", None)
            self._sets.pop(f"{IDENTITY_SESSIONS_PREFIX}{identity_id}", None)
            return revoked

    async def count_identity_sessions(self, identity_id: str) -> int:
        with self._lock:
            return sum(
                1
                for session_id in self._members(f"{IDENTITY_SESSIONS_PREFIX}{identity_id}")
                if self._get(f"{SESSION_PREFIX}{session_id}") is not None
            )

    # -- login failures ---------------------------------------------------

    def _failure_lock(self, email: str) -> threading.Lock:
        return self._failure_locks[hash(email) % len(self._failure_locks)]

    def _failure_count(self, email: str, now: float) -> int:
        """Live count for ``email``; caller holds the email's stripe lock."""
        entry = self._failures.get(email)
        if entry is None:
            return 0
        count, expires_at = entry
        if expires_at <= now:
            del self._failures[email]
            return 0
        return count

    async def record_login_failure(self, email: str, window_seconds: int) -> int:
        now = self._clock()
        with self._failure_lock(email):
            count = self._failure_count(email, now) + 1
            self._failures[email] = (count, now + window_seconds)
            return count

    async def login_failure_count(self, email: str) -> int:
        with self._failure_lock(email):
            return self._failure_count(email, self._clock())

    async def clear_login_failures(self, email: str) -> None:
        with self._failure_lock(email):
            self._failures.pop(email, None)

    # -- rate limits ------------------------------------------------------

    async def check_rate_limit(
        self,
        key: str,
        limit: int,
        window_seconds: int,
        *,
        return_remaining: bool = False,
        cost: int = 1,
    ) -> Union[bool, Tuple[bool, int, int]]:
        refill_rate = float(limit) / float(window_seconds)
        now = self._clock()
        with self._lock:
            tokens, last, _ = self._buckets.get(key, (float(limit), now, window_seconds))
            tokens = min(float(limit), tokens + max(0.0, now - last) * refill_rate)
            allowed = tokens >= cost
            if allowed:
                tokens -= cost
            self._buckets[key] = (tokens, now, float(window_seconds))
        reset_seconds = int((cost - tokens) / refill_rate) if not allowed else 0
        if return_remaining:
            return (allowed, int(tokens), reset_seconds)
        return allowed

    # -- maintenance ------------------------------------------------------

    def purge_expired(self) -> int:
        """Drop expired entries and refilled buckets; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired_values = [k for k, (_, exp) in self._values.items() if exp <= now]
            for key in expired_values:
                del self._values[key]
            expired_sets = [k for k, (_, exp) in self._sets.items() if exp <= now]
            for key in expired_sets:
                del self._sets[key]
            # idle for a whole window means the bucket is full again
            idle_buckets = [
                k for k, (_, last, window) in self._buckets.items() if now - last >= window
            ]
            for key in idle_buckets:
                del self._buckets[key]
        expired_failures = 0
        for email in list(self._failures):
            with self._failure_lock(email):
                if email in self._failures and self._failure_count(email, now) == 0:
                    expired_failures += 1
        return len(expired_values) + len(expired_sets) + len(idle_buckets) + expired_failures
