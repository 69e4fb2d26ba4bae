from wirecode import ratelimit
from wirecode.redis_ratelimit import RedisRateLimiter


def test_in_process_window(monkeypatch):
    ratelimit._reset()
    monkeypatch.setattr(ratelimit, "MAX_REQUESTS", 2)
    monkeypatch.setattr(ratelimit, "_now", lambda: 1000)

    assert ratelimit.check_and_increment("convert", "k")[:2] == (True, 1)
    assert ratelimit.check_and_increment("convert", "k")[:2] == (True, 0)
    allowed, remaining, reset_ts = ratelimit.check_and_increment("convert", "k")
    assert (allowed, remaining) == (False, 0)
    assert reset_ts == 1000 + ratelimit.WINDOW_SECONDS

    # other buckets and keys are independent
    assert ratelimit.check_and_increment("analyze", "k")[0] is True
    assert ratelimit.check_and_increment("convert", "other")[0] is True

    monkeypatch.setattr(ratelimit, "_now", lambda: reset_ts)
    assert ratelimit.check_and_increment("convert", "k")[:2] == (True, 1)
    ratelimit._reset()


class FakePipeline:
    def __init__(self, store):
        self.store = store
        self.ops = []

    def incr(self, key, amount):
        self.ops.append(("incr", key, amount))

    def expire(self, key, seconds):
        self.ops.append(("expire", key, seconds))

    def execute(self):
        results = []
        for op, key, arg in self.ops:
            if op == "incr":
                self.store[key] = self.store.get(key, 0) + arg
                results.append(self.store[key])
            else:
                results.append(True)
        self.ops = []
        return results


class FakeRedis:
    def __init__(self):
        self.store = {}

    def pipeline(self):
        return FakePipeline(self.store)


def test_redis_limiter_fixed_window():
    fake = FakeRedis()
    rl = RedisRateLimiter(window_seconds=60, max_requests=2, client=fake)

    assert rl.check_and_increment("convert", "key:a", now=125) == (True, 1, 180)
    assert rl.check_and_increment("convert", "key:a", now=130) == (True, 0, 180)
    assert rl.check_and_increment("convert", "key:a", now=170) == (False, 0, 180)
    assert "wirecode:rl:convert:key:a:120" in fake.store

    # next window starts fresh
    assert rl.check_and_increment("convert", "key:a", now=185) == (True, 1, 240)


def test_redis_limiter_defaults_follow_in_process_settings():
    rl = RedisRateLimiter(client=FakeRedis())
    assert rl.window_seconds == ratelimit.WINDOW_SECONDS
    assert rl.max_requests == ratelimit.MAX_REQUESTS
