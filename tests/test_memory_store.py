"""Tests for the in-memory identity store and its JSON snapshot."""

import pytest

from adoptly.storage.errors import ConstraintViolation
from adoptly.storage.memory import MemoryStore
from adoptly.storage.models import (
    IdentityKind,
    Individual,
    Organization,
    PasswordHistoryEntry,
    Protector,
    Role,
    identity_from_dict,
    identity_to_dict,
)


def _individual(email="ana@example.com", **kwargs):
    return Individual(id=kwargs.pop("id", f"ind-{email}"), email=email, password_hash="h", name="Ana", **kwargs)


class TestCollections:
    def test_same_email_allowed_in_different_collections(self):
        store = MemoryStore()
        store.create_identity(_individual("shared@example.com"))
        store.create_identity(
            Organization(
                id="org-1",
                email="shared@example.com",
                password_hash="h",
                organization_name="Abrigo",
                registration_number="11222333000181",
            )
        )
        assert store.email_exists(IdentityKind.INDIVIDUAL, "shared@example.com")
        assert store.email_exists(IdentityKind.ORGANIZATION, "shared@example.com")
        assert not store.email_exists(IdentityKind.PROTECTOR, "shared@example.com")

    def test_duplicate_email_in_one_collection_rejected(self):
        store = MemoryStore()
        store.create_identity(_individual())
        with pytest.raises(ConstraintViolation) as excinfo:
            store.create_identity(_individual(id="other"))
        assert excinfo.value.field == "email"

    def test_duplicate_document_numbers_rejected(self):
        store = MemoryStore()
        store.create_identity(
            Protector(id="p-1", email="p1@example.com", password_hash="h", full_name="P", document_number="52998224725")
        )
        with pytest.raises(ConstraintViolation) as excinfo:
            store.create_identity(
                Protector(id="p-2", email="p2@example.com", password_hash="h", full_name="Q", document_number="52998224725")
            )
        assert excinfo.value.field == "document_number"
        assert store.document_number_exists("52998224725")

    def test_updates_return_none_for_unknown_id(self):
        store = MemoryStore()
        assert store.set_identity_active("missing", False) is None
        assert store.update_role("missing", Role.ADMIN) is None
        assert store.update_password_hash("missing", "h") is None

    def test_list_filters_by_kind(self):
        store = MemoryStore()
        store.create_identity(_individual())
        store.create_identity(
            Protector(id="p-1", email="p@example.com", password_hash="h", full_name="P", document_number="52998224725")
        )
        assert [i.id for i in store.list_identities(IdentityKind.PROTECTOR)] == ["p-1"]
        assert len(store.list_identities()) == 2


class TestPasswordHistoryStorage:
    def test_newest_first_and_limit(self):
        store = MemoryStore()
        for n in range(3):
            store.add_password_history(PasswordHistoryEntry(identity_id="i", password_hash=f"h{n}"))
        entries = store.list_password_history("i")
        assert [e.password_hash for e in entries] == ["h2", "h1", "h0"]
        assert [e.password_hash for e in store.list_password_history("i", limit=2)] == ["h2", "h1"]

    def test_delete_by_id(self):
        store = MemoryStore()
        keep = store.add_password_history(PasswordHistoryEntry(identity_id="i", password_hash="a"))
        drop = store.add_password_history(PasswordHistoryEntry(identity_id="i", password_hash="b"))
        assert store.delete_password_history("i", [drop.id]) == 1
        assert [e.id for e in store.list_password_history("i")] == [keep.id]

def _disk_full():
    raise RuntimeError("failed to persist identity state: disk full")


class TestFailedWritesRollBack:
    @pytest.mark.parametrize(
        "update,field,before",
        [
            (lambda s, i: s.set_identity_active(i, False), "active", True),
            (lambda s, i: s.update_role(i, Role.ADMIN), "role", Role.INDIVIDUAL),
            (lambda s, i: s.update_password_hash(i, "new-hash"), "password_hash", "h"),
        ],
    )
    def test_identity_update_restored(self, monkeypatch, update, field, before):
        store = MemoryStore()
        identity = store.create_identity(_individual())
        stamp = identity.updated_at
        monkeypatch.setattr(store, "_persist_state", _disk_full)
        with pytest.raises(RuntimeError):
            update(store, identity.id)
        current = store.get_identity(identity.id)
        assert getattr(current, field) == before
        assert current.updated_at == stamp

    def test_history_entry_dropped(self, monkeypatch):
        store = MemoryStore()
        store.add_password_history(PasswordHistoryEntry(identity_id="i", password_hash="a"))
        monkeypatch.setattr(store, "_persist_state", _disk_full)
        with pytest.raises(RuntimeError):
            store.add_password_history(PasswordHistoryEntry(identity_id="i", password_hash="b"))
        with pytest.raises(RuntimeError):
            store.add_password_history(PasswordHistoryEntry(identity_id="j", password_hash="c"))
        assert [e.password_hash for e in store.list_password_history("i")] == ["a"]
        assert store.list_password_history("j") == []
        assert "j" not in store.password_history

    def test_history_deletions_restored(self, monkeypatch):
        store = MemoryStore()
        entry = store.add_password_history(PasswordHistoryEntry(identity_id="i", password_hash="a"))
        monkeypatch.setattr(store, "_persist_state", _disk_full)
        with pytest.raises(RuntimeError):
            store.delete_password_history("i", [entry.id])
        with pytest.raises(RuntimeError):
            store.clear_password_history("i")
        assert [e.id for e in store.list_password_history("i")] == [entry.id]

    def test_unwritable_directory_rolls_back(self, tmp_path):
        store = MemoryStore(data_dir=str(tmp_path))
        identity = store.create_identity(_individual())
        (tmp_path / "state.json").unlink()
        (tmp_path / "state.json").mkdir()
        with pytest.raises(RuntimeError):
            store.set_identity_active(identity.id, False)
        assert store.get_identity(identity.id).active is True



class TestPersistence:
    def test_state_survives_reload(self, tmp_path):
        store = MemoryStore(data_dir=str(tmp_path))
        store.create_identity(_individual())
        store.set_identity_active("ind-ana@example.com", False)
        store.add_password_history(PasswordHistoryEntry(identity_id="ind-ana@example.com", password_hash="h"))

        reloaded = MemoryStore(data_dir=str(tmp_path))
        identity = reloaded.get_identity_by_email(IdentityKind.INDIVIDUAL, "ana@example.com")
        assert isinstance(identity, Individual)
        assert identity.active is False
        assert identity.display_name == "Ana"
        assert len(reloaded.list_password_history(identity.id)) == 1

    def test_identity_dict_round_trip_keeps_variant(self):
        org = Organization(
            id="org-1",
            email="abrigo@example.com",
            password_hash="h",
            organization_name="Abrigo Feliz",
            registration_number="11222333000181",
        )
        restored = identity_from_dict(identity_to_dict(org))
        assert isinstance(restored, Organization)
        assert restored.role == Role.ORGANIZATION
        assert restored.display_name == "Abrigo Feliz"


def test_display_name_falls_back_when_blank():
    assert Individual(id="x", email="x@example.com", password_hash="h").display_name == "Usuário"
    assert Protector(id="y", email="y@example.com", password_hash="h").display_name == "Usuário"
