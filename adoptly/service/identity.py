from __future__ import annotations

from typing import List, Optional, Protocol

from adoptly.logging import get_logger
from adoptly.service.email_validation import normalize_email
from adoptly.storage.models import DEFAULT_DISPLAY_NAME, Identity, IdentityKind, Role

logger = get_logger(__name__)

# Lookup order across the three collections; first match wins.
RESOLUTION_ORDER = (IdentityKind.INDIVIDUAL, IdentityKind.ORGANIZATION, IdentityKind.PROTECTOR)


class IdentityStore(Protocol):
    def get_identity_by_email(self, kind: IdentityKind, email: str) -> Optional[Identity]: ...

    def email_exists(self, kind: IdentityKind, email: str) -> bool: ...

    def get_identity(self, identity_id: str) -> Optional[Identity]: ...

    def list_identities(self, kind: Optional[IdentityKind] = None) -> List[Identity]: ...

    def registration_number_exists(self, registration_number: str) -> bool: ...

    def document_number_exists(self, document_number: str) -> bool: ...

    def create_identity(self, identity: Identity) -> Identity: ...

    def set_identity_active(self, identity_id: str, active: bool) -> Optional[Identity]: ...

    def update_role(self, identity_id: str, role: Role) -> Optional[Identity]: ...

    def update_password_hash(self, identity_id: str, password_hash: str) -> Optional[Identity]: ...


class IdentityResolver:
    """Resolves one login email across the Individual, Organization and Protector stores.

    The uniqueness check and the subsequent insert are not atomic across
    stores; a concurrent registration can slip between them. The store's own
    per-collection constraint still catches same-variant races.
    """

    def __init__(self, store: IdentityStore) -> None:
        self.store = store

    def find_by_email(self, email: Optional[str]) -> Optional[Identity]:
        normalized = normalize_email(email)
        if not normalized:
            return None
        for kind in RESOLUTION_ORDER:
            identity = self.store.get_identity_by_email(kind, normalized)
            if identity is not None:
                return identity
        return None

    def exists_by_email(self, email: Optional[str]) -> bool:
        normalized = normalize_email(email)
        if not normalized:
            return False
        return any(self.store.email_exists(kind, normalized) for kind in RESOLUTION_ORDER)

    def find_by_id(self, identity_id: str) -> Optional[Identity]:
        return self.store.get_identity(identity_id)

    def display_name_for(self, email: Optional[str]) -> str:
        identity = self.find_by_email(email)
        return identity.display_name if identity else DEFAULT_DISPLAY_NAME
