import pytest

from app.core.rate_limit import (
    RateDecision,
    TokenBucket,
    UserRateLimiter,
    rate_limit_headers,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_sixth_request_in_a_minute_is_rejected():
    clock = FakeClock()
    limiter = UserRateLimiter(requests_per_minute=5, burst=5, clock=clock)

    decisions = [limiter.check("user-a") for _ in range(6)]

    assert [d.allowed for d in decisions] == [True] * 5 + [False]
    assert decisions[4].remaining == 0
    assert decisions[5].retry_after > 0


def test_request_is_accepted_after_window_refills():
    clock = FakeClock()
    limiter = UserRateLimiter(requests_per_minute=5, burst=5, clock=clock)

    for _ in range(5):
        assert limiter.check("user-a").allowed
    assert not limiter.check("user-a").allowed

    clock.advance(60)

    assert limiter.check("user-a").allowed


def test_retry_after_matches_refill_rate():
    clock = FakeClock()
    limiter = UserRateLimiter(requests_per_minute=5, burst=5, clock=clock)
    for _ in range(5):
        limiter.check("user-a")

    denied = limiter.check("user-a")

    # one token every 12 seconds
    assert denied.retry_after == pytest.approx(12.0)


def test_users_have_independent_buckets():
    clock = FakeClock()
    limiter = UserRateLimiter(requests_per_minute=5, burst=5, clock=clock)
    for _ in range(5):
        limiter.check("user-a")

    assert not limiter.check("user-a").allowed
    assert limiter.check("user-b").allowed


def test_refill_is_capped_at_capacity():
    bucket = TokenBucket(capacity=5, refill_rate=5 / 60, now=0.0)
    bucket.consume(0.0)

    decision = bucket.consume(10_000.0)

    assert decision.allowed
    assert decision.remaining == 4


def test_evict_idle_drops_only_stale_buckets():
    clock = FakeClock()
    limiter = UserRateLimiter(requests_per_minute=5, idle_ttl=300, clock=clock)
    limiter.check("stale")
    clock.advance(200)
    limiter.check("fresh")
    clock.advance(150)

    evicted = limiter.evict_idle()

    assert evicted == 1
    assert len(limiter) == 1


def test_evicted_user_starts_with_full_bucket():
    clock = FakeClock()
    limiter = UserRateLimiter(requests_per_minute=5, burst=5, idle_ttl=10, clock=clock)
    for _ in range(5):
        limiter.check("user-a")
    clock.advance(11)
    limiter.evict_idle()

    assert limiter.check("user-a").remaining == 4


def test_invalid_configuration_is_rejected():
    with pytest.raises(ValueError):
        UserRateLimiter(requests_per_minute=0)
    with pytest.raises(ValueError):
        TokenBucket(capacity=0, refill_rate=1.0, now=0.0)


def test_headers_for_denied_request_include_retry_hints():
    headers = rate_limit_headers(
        RateDecision(allowed=False, limit=5, remaining=0, retry_after=11.2),
        per_minute=5,
    )

    assert headers["X-RateLimit-Limit"] == "5"
    assert headers["X-RateLimit-Remaining"] == "0"
    assert headers["Retry-After"] == "12"
    assert "X-RateLimit-Reset" in headers


def test_headers_for_allowed_request_omit_retry_after():
    headers = rate_limit_headers(
        RateDecision(allowed=True, limit=5, remaining=3, retry_after=0.0),
        per_minute=5,
    )

    assert headers == {"X-RateLimit-Limit": "5", "X-RateLimit-Remaining": "3"}
