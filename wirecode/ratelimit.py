from __future__ import annotations
import os
import threading
import time
from typing import Dict, Tuple

try:
    WINDOW_SECONDS: int = int(os.getenv("RATE_WINDOW_SECONDS", "3600"))
except Exception:
    WINDOW_SECONDS = 3600
try:
    MAX_REQUESTS: int = int(os.getenv("RATE_MAX_REQUESTS", "30"))
except Exception:
    MAX_REQUESTS = 30

_lock = threading.Lock()
_store: Dict[Tuple[str, str], Dict[str, int]] = {}

def _now() -> int:
    return int(time.time())

def _bk(bucket: str, key: str) -> Tuple[str, str]:
    return (bucket or "default", key or "anon")

def check_and_increment(bucket: str, key: str) -> Tuple[bool, int, int]:
    """
    Fixed window per (bucket, key).
    Returns (allowed, remaining, reset_ts).
    """
    k = _bk(bucket, key)
    now = _now()
    with _lock:
        entry = _store.get(k)
        if entry is None or now >= entry["reset_ts"]:
            entry = {"count": 0, "reset_ts": now + WINDOW_SECONDS}
            _store[k] = entry
        if entry["count"] >= MAX_REQUESTS:
            return False, 0, entry["reset_ts"]
        entry["count"] += 1
        return True, max(0, MAX_REQUESTS - entry["count"]), entry["reset_ts"]

def _reset():
    """Used by tests to clear state."""
    with _lock:
        _store.clear()
