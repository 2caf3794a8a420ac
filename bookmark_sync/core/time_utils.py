from __future__ import annotations

import time
from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def now_ms() -> int:
    """Milliseconds since the Unix epoch, the unit used on the wire."""
    return int(time.time() * 1000)
