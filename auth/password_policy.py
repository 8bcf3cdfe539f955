"""
auth/password_policy.py -- Password strength rules.

validate_password() is a pure function: every rule is evaluated (no
short-circuit) and the result lists one message per failed rule, always in
the same order, so the UI can show the complete list at once.
"""

from __future__ import annotations

import re
from typing import NamedTuple

MIN_LENGTH = 12
SPECIAL_CHARACTERS = '!@#$%^&*(),.?":{}|<>'

_REPEATED_RUN = re.compile(r"(.)\1{2,}")
_COMMON_PATTERNS = re.compile(r"123|abc|qwe|password|admin", re.IGNORECASE)


class PasswordCheck(NamedTuple):
    is_valid: bool
    errors: list[str]


def validate_password(password: str) -> PasswordCheck:
    errors: list[str] = []

    if len(password) < MIN_LENGTH:
        errors.append(f"Password must be at least {MIN_LENGTH} characters long")
    if not any(c.isascii() and c.isupper() for c in password):
        errors.append("Password must contain at least one uppercase letter")
    if not any(c.isascii() and c.islower() for c in password):
        errors.append("Password must contain at least one lowercase letter")
    if not any(c.isascii() and c.isdigit() for c in password):
        errors.append("Password must contain at least one number")
    if not any(c in SPECIAL_CHARACTERS for c in password):
        errors.append("Password must contain at least one special character")
    if _REPEATED_RUN.search(password):
        errors.append("Password cannot contain three or more repeated characters")
    if _COMMON_PATTERNS.search(password):
        errors.append("Password cannot contain common patterns")

    return PasswordCheck(is_valid=not errors, errors=errors)
