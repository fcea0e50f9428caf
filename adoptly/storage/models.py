from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Type


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Role(str, Enum):
    INDIVIDUAL = "individual"
    ORGANIZATION = "organization"
    PROTECTOR = "protector"
    ADMIN = "admin"


class IdentityKind(str, Enum):
    """Which backing collection an identity lives in."""

    INDIVIDUAL = "individual"
    ORGANIZATION = "organization"
    PROTECTOR = "protector"


DEFAULT_DISPLAY_NAME = "Usuário"


@dataclass
class Identity:
    """Fields shared by every authenticable principal."""

    id: str
    email: str
    password_hash: str
    phone: Optional[str] = None
    role: Role = Role.INDIVIDUAL
    active: bool = True
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    kind: ClassVar[Optional[IdentityKind]] = None

    @property
    def display_name(self) -> str:
        return DEFAULT_DISPLAY_NAME

    def touch(self) -> None:
        self.updated_at = _utcnow()


@dataclass
class Individual(Identity):
    name: str = ""

    kind = IdentityKind.INDIVIDUAL

    @property
    def display_name(self) -> str:
        return self.name or DEFAULT_DISPLAY_NAME


@dataclass
class Organization(Identity):
    organization_name: str = ""
    registration_number: str = ""
    role: Role = Role.ORGANIZATION

    kind = IdentityKind.ORGANIZATION

    @property
    def display_name(self) -> str:
        return self.organization_name or DEFAULT_DISPLAY_NAME


@dataclass
class Protector(Identity):
    full_name: str = ""
    document_number: str = ""
    role: Role = Role.PROTECTOR

    kind = IdentityKind.PROTECTOR

    @property
    def display_name(self) -> str:
        return self.full_name or DEFAULT_DISPLAY_NAME


IDENTITY_CLASSES: Dict[IdentityKind, Type[Identity]] = {
    IdentityKind.INDIVIDUAL: Individual,
    IdentityKind.ORGANIZATION: Organization,
    IdentityKind.PROTECTOR: Protector,
}


@dataclass
class PasswordHistoryEntry:
    identity_id: str
    password_hash: str
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)


def identity_to_dict(identity: Identity) -> Dict[str, Any]:
    """Serialize an identity into JSON-safe primitives, tagged with its kind."""
    data = asdict(identity)
    data["kind"] = identity.kind.value
    data["role"] = identity.role.value
    data["created_at"] = identity.created_at.isoformat()
    data["updated_at"] = identity.updated_at.isoformat()
    return data


def identity_from_dict(data: Dict[str, Any]) -> Identity:
    payload = dict(data)
    kind = IdentityKind(payload.pop("kind"))
    payload["role"] = Role(payload["role"])
    payload["created_at"] = datetime.fromisoformat(payload["created_at"])
    payload["updated_at"] = datetime.fromisoformat(payload["updated_at"])
    return IDENTITY_CLASSES[kind](**payload)


def history_entry_to_dict(entry: PasswordHistoryEntry) -> Dict[str, Any]:
    data = asdict(entry)
    data["created_at"] = entry.created_at.isoformat()
    return data


def history_entry_from_dict(data: Dict[str, Any]) -> PasswordHistoryEntry:
    payload = dict(data)
    payload["created_at"] = datetime.fromisoformat(payload["created_at"])
    return PasswordHistoryEntry(**payload)
