"""
Input validators — framework-agnostic, pure functions.
"""

from __future__ import annotations

import re

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128


def validate_password(password: str) -> list[str]:
    """Return the password requirements *password* does not meet.

    An empty list means the password is acceptable.
    """
    if not password:
        return ["Password is required"]

    missing = []
    if len(password) < PASSWORD_MIN_LENGTH:
        missing.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(password) > PASSWORD_MAX_LENGTH:
        missing.append(f"Password must be at most {PASSWORD_MAX_LENGTH} characters")
    if not re.search(r"[A-Z]", password):
        missing.append("Password must contain an uppercase letter")
    if not re.search(r"[a-z]", password):
        missing.append("Password must contain a lowercase letter")
    if not re.search(r"[0-9]", password):
        missing.append("Password must contain a number")
    return missing


def normalize_email(email: str) -> str:
    """Lowercase and strip *email*; all account lookups go through this."""
    return email.strip().lower()


def is_otp_format(code: str, length: int = 6) -> bool:
    """Return True if *code* is exactly *length* ASCII digits."""
    return len(code) == length and code.isascii() and code.isdigit()
