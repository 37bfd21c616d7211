"""UTC datetime utilities."""

from collections.abc import Callable
from datetime import datetime, timezone

# Injected into services so timestamps (and therefore queue order) are testable.
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)
