"""Brazilian registration numbers (CPF, CNPJ) and phone numbers."""

from __future__ import annotations

import re
from typing import Optional, Sequence

_CNPJ_FIRST_WEIGHTS = (5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)
_CNPJ_SECOND_WEIGHTS = (6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)
_PHONE_PATTERN = re.compile(r"^[0-9]{10,11}$")
_ASCII_DIGITS = re.compile(r"^[0-9]+$")
_PUNCTUATION = re.compile(r"[.\-/\s()]")


def only_digits(value: Optional[str]) -> str:
    """Strip the usual formatting characters; anything else is left in place."""
    return _PUNCTUATION.sub("", value or "")


def _check_digit(digits: Sequence[int], weights: Sequence[int]) -> int:
    remainder = sum(d * w for d, w in zip(digits, weights)) % 11
    return 0 if remainder < 2 else 11 - remainder


def is_valid_cpf(value: Optional[str]) -> bool:
    cpf = only_digits(value)
    if len(cpf) != 11 or not _ASCII_DIGITS.match(cpf) or len(set(cpf)) == 1:
        return False
    digits = [int(c) for c in cpf]
    first = _check_digit(digits[:9], range(10, 1, -1))
    second = _check_digit(digits[:10], range(11, 1, -1))
    return digits[9] == first and digits[10] == second


def is_valid_cnpj(value: Optional[str]) -> bool:
    cnpj = only_digits(value)
    if len(cnpj) != 14 or not _ASCII_DIGITS.match(cnpj) or len(set(cnpj)) == 1:
        return False
    digits = [int(c) for c in cnpj]
    first = _check_digit(digits[:12], _CNPJ_FIRST_WEIGHTS)
    second = _check_digit(digits[:13], _CNPJ_SECOND_WEIGHTS)
    return digits[12] == first and digits[13] == second


def is_valid_phone(value: Optional[str]) -> bool:
    return bool(_PHONE_PATTERN.match(only_digits(value)))
