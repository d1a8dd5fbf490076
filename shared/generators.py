"""
Random code and token generators — pure, side-effect-free functions.

All generators use the cryptographically secure ``secrets`` module; codes are
never derived from account data.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta

from schemas.models.account import SecretKind, VerificationSecret
from shared.crypto import hash_token


def generate_otp_code(length: int = 6) -> str:
    """Generate a cryptographically secure numeric OTP.

    Args:
        length: Number of digits (default 6).

    Returns:
        String of uniformly random decimal digits (leading zeros allowed).
    """
    return "".join(secrets.choice(string.digits) for _ in range(length))


def generate_secure_token(length: int = 32) -> str:
    """Generate a cryptographically secure random token.

    Args:
        length: Number of random bytes (default 32).

    Returns:
        Hex-encoded token string of ``2 * length`` characters.
    """
    return secrets.token_hex(length)


@dataclass(frozen=True)
class IssuedSecret:
    """Plaintext for delivery plus the hashed record to persist."""

    plaintext: str
    record: VerificationSecret


def issue_secret(
    kind: SecretKind,
    *,
    ttl_seconds: int,
    now: datetime,
    otp_length: int = 6,
) -> IssuedSecret:
    """Generate a code or token for *kind* that expires at ``now + ttl``.

    OTP kinds get a numeric code of *otp_length* digits; token kinds get a
    32-byte hex token.
    """
    if kind in (SecretKind.SIGNUP_OTP, SecretKind.PASSWORD_RESET_OTP):
        plaintext = generate_otp_code(otp_length)
    else:
        plaintext = generate_secure_token()
    record = VerificationSecret(
        kind=kind,
        token_hash=hash_token(plaintext),
        expires_at=now + timedelta(seconds=ttl_seconds),
        issued_at=now,
    )
    return IssuedSecret(plaintext=plaintext, record=record)
