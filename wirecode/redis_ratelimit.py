import os
import time
from typing import Optional, Tuple

try:
    import redis  # type: ignore
except Exception:  # pragma: no cover - redis is an optional dependency in some envs
    redis = None  # type: ignore

from wirecode import ratelimit

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")


class RedisRateLimiter:
    """
    Fixed-window limiter shared across workers; same return contract as
    wirecode.ratelimit.check_and_increment.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        window_seconds: Optional[int] = None,
        max_requests: Optional[int] = None,
        client=None,
    ) -> None:
        self.window_seconds = int(window_seconds or ratelimit.WINDOW_SECONDS)
        self.max_requests = int(max_requests or ratelimit.MAX_REQUESTS)
        if client is not None:
            self._client = client
            return
        if redis is None:
            raise RuntimeError("redis package is not installed")
        url = (redis_url or REDIS_URL).strip() or REDIS_URL
        # Lazy: no network traffic until the first command
        self._client = redis.from_url(url, decode_responses=True)

    def _window_start(self, now: int) -> int:
        return now - (now % self.window_seconds)

    def _bucket_key(self, prefix: str, key: str, now: int) -> str:
        bucket = (prefix or "default").strip() or "default"
        user_key = (key or "anon").strip() or "anon"
        return f"wirecode:rl:{bucket}:{user_key}:{self._window_start(now)}"

    def check_and_increment(self, prefix: str, key: str, now: Optional[int] = None) -> Tuple[bool, int, int]:
        current_ts = now or int(time.time())
        bucket_key = self._bucket_key(prefix, key, current_ts)
        pipe = self._client.pipeline()
        pipe.incr(bucket_key, 1)
        pipe.expire(bucket_key, self.window_seconds)
        count, _ = pipe.execute()
        used = int(count)
        reset_ts = self._window_start(current_ts) + self.window_seconds
        return (used <= self.max_requests, max(0, self.max_requests - used), reset_ts)
