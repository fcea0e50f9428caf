from __future__ import annotations

from typing import Iterable, List, Optional, Protocol

from adoptly.logging import get_logger
from adoptly.service.hashing import verify_password
from adoptly.storage.models import PasswordHistoryEntry

logger = get_logger(__name__)

DEFAULT_HISTORY_SIZE = 5


class PasswordHistoryStore(Protocol):
    def add_password_history(self, entry: PasswordHistoryEntry) -> PasswordHistoryEntry: ...

    def list_password_history(
        self, identity_id: str, limit: Optional[int] = None
    ) -> List[PasswordHistoryEntry]: ...

    def delete_password_history(self, identity_id: str, entry_ids: Iterable[str]) -> int: ...

    def clear_password_history(self, identity_id: str) -> int: ...


class PasswordHistoryGuard:
    """Blocks reuse of an identity's most recent passwords."""

    def __init__(self, store: PasswordHistoryStore, *, history_size: int = DEFAULT_HISTORY_SIZE):
        self.store = store
        self.history_size = history_size

    def is_password_reused(self, identity_id: str, candidate_password: str) -> bool:
        try:
            recent = self.store.list_password_history(identity_id, limit=self.history_size)
        except Exception as exc:
            # fail open: an unreadable history never blocks a password change
            logger.warning(
                "password_history_check_failed",
                identity_id=identity_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False
        return any(verify_password(entry.password_hash, candidate_password) for entry in recent)

    def record_password(self, identity_id: str, password_hash: str) -> PasswordHistoryEntry:
        entry = self.store.add_password_history(
            PasswordHistoryEntry(identity_id=identity_id, password_hash=password_hash)
        )
        entries = self.store.list_password_history(identity_id)
        stale = [e.id for e in entries[self.history_size:]]
        if stale:
            self.store.delete_password_history(identity_id, stale)
            logger.debug("password_history_pruned", identity_id=identity_id, removed=len(stale))
        return entry

    def history_count(self, identity_id: str) -> int:
        return len(self.store.list_password_history(identity_id))

    def clear_history(self, identity_id: str) -> int:
        removed = self.store.clear_password_history(identity_id)
        logger.info("password_history_cleared", identity_id=identity_id, removed=removed)
        return removed
