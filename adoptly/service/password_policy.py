from __future__ import annotations

import re
from typing import List, Optional

from adoptly.service.errors import PASSWORD_POLICY_DESCRIPTION

MIN_LENGTH = 8
MAX_LENGTH = 128
MIN_CHARACTER_CLASSES = 3

SPECIAL_CHARACTERS = frozenset('!@#$%^&*(),.?":{}|<>')

COMMON_PASSWORDS = frozenset(
    {
        "123456", "password", "123456789", "12345678", "12345",
        "1234567", "1234567890", "qwerty", "abc123", "111111",
        "123123", "admin", "letmein", "welcome", "monkey",
        "dragon", "pass", "master", "hello", "freedom",
        "whatever", "qazwsx", "trustno1", "jordan23", "harley",
        "robert", "matthew", "jordan", "asshole", "daniel",
        "andrew", "martin", "jordan1", "baseball", "samsung",
        "liverpool", "chelsea", "arsenal", "football", "soccer",
        "iloveyou", "password1", "123qwe", "000000", "password123",
    }
)

_KEYBOARD_RUNS = ("qwerty", "asdf", "zxcv")
_REPEATED_CHAR = re.compile(r"(.)\1\1")
_SEQUENTIAL_DIGITS = tuple("0123456789"[i:i + 3] for i in range(8))


class PasswordPolicy:
    """Strength rules applied to every password set or changed."""

    description = PASSWORD_POLICY_DESCRIPTION

    def __init__(
        self,
        *,
        min_length: int = MIN_LENGTH,
        max_length: int = MAX_LENGTH,
        min_classes: int = MIN_CHARACTER_CLASSES,
        common_passwords: frozenset[str] = COMMON_PASSWORDS,
    ) -> None:
        self.min_length = min_length
        self.max_length = max_length
        self.min_classes = min_classes
        self.common_passwords = frozenset(p.lower() for p in common_passwords)

    def is_valid_password(self, password: Optional[str]) -> bool:
        if not password or not password.strip():
            return False
        if not self.min_length <= len(password) <= self.max_length:
            return False
        if self.complexity_score(password) < self.min_classes:
            return False
        return not self.is_common_password(password)

    @staticmethod
    def complexity_score(password: str) -> int:
        """Number of character classes present anywhere in ``password`` (0-4)."""
        return sum(
            (
                any(c.isupper() for c in password),
                any(c.islower() for c in password),
                any(c.isdigit() for c in password),
                any(c in SPECIAL_CHARACTERS for c in password),
            )
        )

    def is_common_password(self, password: Optional[str]) -> bool:
        return bool(password) and password.lower() in self.common_passwords

    @staticmethod
    def has_common_pattern(password: Optional[str]) -> bool:
        """Sequential digits, keyboard runs or a character repeated three times."""
        if not password:
            return False
        lowered = password.lower()
        if any(seq in lowered for seq in _SEQUENTIAL_DIGITS):
            return True
        if any(run in lowered for run in _KEYBOARD_RUNS):
            return True
        return bool(_REPEATED_CHAR.search(password))

    def weaknesses(self, password: Optional[str]) -> List[str]:
        """Human-readable hints for a rejected (or merely guessable) password."""
        if not password or not password.strip():
            return ["A senha é obrigatória"]
        hints: List[str] = []
        if len(password) < self.min_length:
            hints.append(f"A senha deve ter pelo menos {self.min_length} caracteres")
        if len(password) > self.max_length:
            hints.append(f"A senha deve ter no máximo {self.max_length} caracteres")
        if self.complexity_score(password) < self.min_classes:
            hints.append(
                "Use pelo menos 3 tipos: maiúsculas, minúsculas, números e caracteres especiais"
            )
        if self.is_common_password(password):
            hints.append("Esta senha é muito comum")
        if self.has_common_pattern(password):
            hints.append("Evite sequências, padrões de teclado e caracteres repetidos")
        return hints
