import pytest

from gradeflow.utils import rate_limit
from gradeflow.utils.rate_limit import InMemoryRateLimiter, RateLimitExceeded


def test_allows_up_to_the_limit_per_key():
    limiter = InMemoryRateLimiter(max_requests=2, window_seconds=60)
    assert limiter.allow("a")[0]
    assert limiter.allow("a")[0]
    allowed, retry_after = limiter.allow("a")
    assert not allowed
    assert 1 <= retry_after <= 60
    assert limiter.allow("b")[0]


def test_window_expiry(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr(rate_limit.time, "monotonic", lambda: now[0])
    limiter = InMemoryRateLimiter(max_requests=1, window_seconds=10)
    assert limiter.allow("k")[0]
    assert not limiter.allow("k")[0]
    now[0] += 10.5
    assert limiter.allow("k")[0]


def test_enforce_raises_with_retry_after():
    limiter = InMemoryRateLimiter(max_requests=1, window_seconds=30)
    limiter.enforce("k")
    with pytest.raises(RateLimitExceeded) as exc:
        limiter.enforce("k")
    assert exc.value.status_code == 429
    assert exc.value.retry_after >= 1
    limiter.reset()
    limiter.enforce("k")
