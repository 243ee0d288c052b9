"""Input validation for registration and shop-floor forms."""

from __future__ import annotations

import re
from typing import Optional

SPECIAL_CHARACTERS = '!@#$%^&*(),.?":{}|<>'
MIN_PASSWORD_LENGTH = 8
MIN_NAME_LENGTH = 3

_NAME_PATTERN = re.compile(r"^[a-zA-ZÀ-ÿ\s]*$")
_NON_DIGITS = re.compile(r"[^0-9]")


class ValidationError(ValueError):
    """Raised when user supplied data is rejected; the message is user facing."""


def normalize_cpf(cpf: str) -> str:
    return _NON_DIGITS.sub("", cpf or "")


def _check_digit(digits: str, weight_start: int) -> int:
    total = sum(int(digit) * (weight_start - index) for index, digit in enumerate(digits))
    digit = 11 - (total % 11)
    return 0 if digit >= 10 else digit


def is_valid_cpf(cpf: str) -> bool:
    """Validate a Brazilian CPF with its two mod-11 check digits.

    Punctuation is ignored.  Strings made of one repeated digit are refused
    even though some of them satisfy the arithmetic.
    """

    digits = normalize_cpf(cpf)
    if len(digits) != 11:
        return False
    if digits == digits[0] * 11:
        return False
    if _check_digit(digits[:9], 10) != int(digits[9]):
        return False
    return _check_digit(digits[:10], 11) == int(digits[10])


def password_problem(password: str) -> Optional[str]:
    """Return why ``password`` is too weak, or ``None`` when acceptable."""

    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must have at least {MIN_PASSWORD_LENGTH} characters"
    if not re.search(r"[a-zA-Z]", password):
        return "Password must contain letters"
    if not re.search(r"[0-9]", password):
        return "Password must contain digits"
    if not any(character in SPECIAL_CHARACTERS for character in password):
        return "Password must contain special characters"
    return None


def validate_name(name: str) -> str:
    cleaned = (name or "").strip()
    if len(cleaned) < MIN_NAME_LENGTH:
        raise ValidationError(f"Name must have at least {MIN_NAME_LENGTH} characters")
    if not _NAME_PATTERN.match(cleaned):
        raise ValidationError("Name must contain only letters")
    return cleaned


def validate_cpf(cpf: str) -> str:
    if not is_valid_cpf(cpf):
        raise ValidationError("Invalid CPF")
    return normalize_cpf(cpf)


def validate_password(password: str) -> str:
    problem = password_problem(password or "")
    if problem:
        raise ValidationError(problem)
    return password


__all__ = [
    "ValidationError",
    "SPECIAL_CHARACTERS",
    "normalize_cpf",
    "is_valid_cpf",
    "password_problem",
    "validate_name",
    "validate_cpf",
    "validate_password",
]
