"""
Local record identifiers.

Ids are epoch milliseconds. Two ids requested within the same millisecond
would collide, so the generator keeps the last issued value and bumps it.
"""

import threading
import time
from typing import Optional

_lock = threading.Lock()
_last_id = 0


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def new_local_id(clock_ms: Optional[int] = None) -> int:
    """
    Return a process-unique, strictly increasing id.

    Args:
        clock_ms: Override for the current time (tests)

    Returns:
        Millisecond-based integer id
    """
    global _last_id
    candidate = now_ms() if clock_ms is None else clock_ms
    with _lock:
        if candidate <= _last_id:
            candidate = _last_id + 1
        _last_id = candidate
    return candidate


def upload_key(prefix: str, filename: str, clock_ms: Optional[int] = None) -> str:
    """Build a blob key in the ``{prefix}_{epoch_ms}_{filename}`` format."""
    stamp = now_ms() if clock_ms is None else clock_ms
    return f"{prefix}_{stamp}_{filename}"
