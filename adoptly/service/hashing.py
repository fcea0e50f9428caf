from __future__ import annotations

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError

_pwd_hasher = PasswordHasher(type=Type.ID)


def hash_password(password: str) -> str:
    return _pwd_hasher.hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    """Constant-time check of ``password`` against an argon2 hash; never raises."""
    if not password_hash or password is None:
        return False
    try:
        return _pwd_hasher.verify(password_hash, password)
    except (InvalidHash, VerificationError):
        return False
