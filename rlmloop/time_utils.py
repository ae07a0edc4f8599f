"""
rlmloop.time_utils

Small time helpers shared across runtime components.
"""
from __future__ import annotations

import time
from datetime import datetime, timezone


def now_ms() -> int:
    return int(time.time() * 1000)


def elapsed_ms(started_monotonic: float) -> int:
    return int((time.monotonic() - started_monotonic) * 1000)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
