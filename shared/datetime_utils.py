"""
Date/time helpers — framework-agnostic.

Every timestamp the service stores or compares is a timezone-aware UTC
datetime. Components take a ``Clock`` so tests can pin "now".
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)

