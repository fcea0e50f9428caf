from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from adoptly.logging import get_logger
from adoptly.storage.errors import ConstraintViolation
from adoptly.storage.models import (
    Identity,
    IdentityKind,
    Organization,
    PasswordHistoryEntry,
    Protector,
    Role,
    history_entry_from_dict,
    history_entry_to_dict,
    identity_from_dict,
    identity_to_dict,
)


class MemoryStore:
    """In-process identity store with optional JSON snapshotting.

    Identities live in three disjoint collections, one per ``IdentityKind``.
    Email is unique within a collection here; uniqueness across collections
    is the resolver's job. When ``data_dir`` is given every write is flushed
    to ``<data_dir>/state.json`` and reloaded on construction.
    """

    def __init__(self, data_dir: str | None = None) -> None:
        self.logger = get_logger(__name__)
        self.collections: Dict[IdentityKind, Dict[str, Identity]] = {
            kind: {} for kind in IdentityKind
        }
        self.password_history: Dict[str, List[PasswordHistoryEntry]] = {}
        # RLock so helpers can be called while a public method holds the lock
        self._data_lock = threading.RLock()
        self.data_dir = Path(data_dir) if data_dir else None
        if self.data_dir is not None:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            self._load_state()

    # -- identities -------------------------------------------------------

    def get_identity_by_email(self, kind: IdentityKind, email: str) -> Optional[Identity]:
        with self._data_lock:
            for identity in self.collections[kind].values():
                if identity.email == email:
                    return identity
            return None

    def email_exists(self, kind: IdentityKind, email: str) -> bool:
        return self.get_identity_by_email(kind, email) is not None

    def get_identity(self, identity_id: str) -> Optional[Identity]:
        with self._data_lock:
            for collection in self.collections.values():
                identity = collection.get(identity_id)
                if identity is not None:
                    return identity
            return None

    def list_identities(self, kind: Optional[IdentityKind] = None) -> List[Identity]:
        with self._data_lock:
            kinds: Iterable[IdentityKind] = [kind] if kind else list(IdentityKind)
            identities = [
                identity for k in kinds for identity in self.collections[k].values()
            ]
        return sorted(identities, key=lambda i: i.created_at)

    def registration_number_exists(self, registration_number: str) -> bool:
        with self._data_lock:
            return any(
                isinstance(org, Organization) and org.registration_number == registration_number
                for org in self.collections[IdentityKind.ORGANIZATION].values()
            )

    def document_number_exists(self, document_number: str) -> bool:
        with self._data_lock:
            return any(
                isinstance(p, Protector) and p.document_number == document_number
                for p in self.collections[IdentityKind.PROTECTOR].values()
            )

    def create_identity(self, identity: Identity) -> Identity:
        with self._data_lock:
            collection = self.collections[identity.kind]
            if any(existing.email == identity.email for existing in collection.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            if isinstance(identity, Organization) and self.registration_number_exists(
                identity.registration_number
            ):
                raise ConstraintViolation(
                    "registration number already exists", {"field": "registration_number"}
                )
            if isinstance(identity, Protector) and self.document_number_exists(
                identity.document_number
            ):
                raise ConstraintViolation(
                    "document number already exists", {"field": "document_number"}
                )
            collection[identity.id] = identity
            try:
                self._persist_state()
            except RuntimeError:
                del collection[identity.id]
                raise
            return identity

    def _update_identity(self, identity_id: str, **changes: Any) -> Optional[Identity]:
        """Apply ``changes`` and persist; the old values come back if persisting fails."""
        with self._data_lock:
            identity = self.get_identity(identity_id)
            if identity is None:
                return None
            previous = {name: getattr(identity, name) for name in changes}
            previous["updated_at"] = identity.updated_at
            for name, value in changes.items():
                setattr(identity, name, value)
            identity.touch()
            try:
                self._persist_state()
            except RuntimeError:
                for name, value in previous.items():
                    setattr(identity, name, value)
                raise
            return identity

    def set_identity_active(self, identity_id: str, active: bool) -> Optional[Identity]:
        return self._update_identity(identity_id, active=active)

    def update_role(self, identity_id: str, role: Role) -> Optional[Identity]:
        return self._update_identity(identity_id, role=role)

    def update_password_hash(self, identity_id: str, password_hash: str) -> Optional[Identity]:
        return self._update_identity(identity_id, password_hash=password_hash)

    # -- password history -------------------------------------------------

    def add_password_history(self, entry: PasswordHistoryEntry) -> PasswordHistoryEntry:
        with self._data_lock:
            entries = self.password_history.setdefault(entry.identity_id, [])
            entries.append(entry)
            try:
                self._persist_state()
            except RuntimeError:
                entries.remove(entry)
                if not entries:
                    del self.password_history[entry.identity_id]
                raise
            return entry

    def list_password_history(
        self, identity_id: str, limit: Optional[int] = None
    ) -> List[PasswordHistoryEntry]:
        """Entries for ``identity_id``, newest first."""
        with self._data_lock:
            entries = list(self.password_history.get(identity_id, []))
        # insertion order breaks timestamp ties
        ordered = sorted(enumerate(entries), key=lambda p: (p[1].created_at, p[0]), reverse=True)
        entries = [entry for _, entry in ordered]
        return entries[:limit] if limit is not None else entries

    def delete_password_history(self, identity_id: str, entry_ids: Iterable[str]) -> int:
        doomed = set(entry_ids)
        with self._data_lock:
            entries = self.password_history.get(identity_id, [])
            kept = [e for e in entries if e.id not in doomed]
            removed = len(entries) - len(kept)
            if not removed:
                return 0
            if kept:
                self.password_history[identity_id] = kept
            else:
                self.password_history.pop(identity_id, None)
            try:
                self._persist_state()
            except RuntimeError:
                self.password_history[identity_id] = entries
                raise
            return removed

    def clear_password_history(self, identity_id: str) -> int:
        with self._data_lock:
            entries = self.password_history.pop(identity_id, [])
            if not entries:
                return 0
            try:
                self._persist_state()
            except RuntimeError:
                self.password_history[identity_id] = entries
                raise
            return len(entries)

    # -- health / persistence ---------------------------------------------

    def verify_connection(self) -> None:
        if self.data_dir is not None and not self.data_dir.is_dir():
            raise FileNotFoundError(self.data_dir)

    def _state_path(self) -> Path:
        assert self.data_dir is not None
        return self.data_dir / "state.json"

    def _persist_state(self) -> None:
        if self.data_dir is None:
            return
        state = {
            "identities": [
                identity_to_dict(identity)
                for collection in self.collections.values()
                for identity in collection.values()
            ],
            "password_history": [
                history_entry_to_dict(entry)
                for entries in self.password_history.values()
                for entry in entries
            ],
        }
        path = self._state_path()
        tmp_path = path.with_suffix(".tmp")
        try:
            tmp_path.write_text(json.dumps(state, indent=2))
            tmp_path.replace(path)
        except OSError as exc:
            raise RuntimeError(f"failed to persist identity state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        for raw in data.get("identities", []):
            identity = identity_from_dict(raw)
            self.collections[identity.kind][identity.id] = identity
        for raw in data.get("password_history", []):
            entry = history_entry_from_dict(raw)
            self.password_history.setdefault(entry.identity_id, []).append(entry)
        self.logger.info(
            "identity_state_loaded",
            identities=sum(len(c) for c in self.collections.values()),
            path=str(path),
        )
        return True
