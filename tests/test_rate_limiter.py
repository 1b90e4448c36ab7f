from unittest.mock import patch

from services import rate_limiter
from services.rate_limiter import RateLimiter, check_rate_limit, client_key


def test_bucket_exhausts_after_configured_calls():
    limiter = RateLimiter(calls_per_window=3, window_seconds=600, enabled=True)

    assert [limiter.is_allowed("ip:1") for _ in range(3)] == [True, True, True]
    assert limiter.is_allowed("ip:1") is False
    assert limiter.get_reset_time("ip:1") is not None


def test_identifiers_have_separate_buckets():
    limiter = RateLimiter(calls_per_window=1, window_seconds=600, enabled=True)

    assert limiter.is_allowed("ip:1") is True
    assert limiter.is_allowed("ip:1") is False
    assert limiter.is_allowed("ip:2") is True


def test_tokens_refill_over_time():
    limiter = RateLimiter(calls_per_window=2, window_seconds=60, enabled=True)

    with patch("services.rate_limiter.time.time", return_value=1000.0):
        assert limiter.is_allowed("ip:1")
        assert limiter.is_allowed("ip:1")
        assert not limiter.is_allowed("ip:1")

    # One token every 30 seconds.
    with patch("services.rate_limiter.time.time", return_value=1031.0):
        assert limiter.is_allowed("ip:1")


def test_disabled_limiter_always_allows():
    limiter = RateLimiter(calls_per_window=1, window_seconds=600, enabled=False)

    assert all(limiter.is_allowed("ip:1") for _ in range(10))
    assert limiter.get_reset_time("ip:1") is None


def test_reset_restores_tokens():
    limiter = RateLimiter(calls_per_window=1, window_seconds=600, enabled=True)
    limiter.is_allowed("ip:1")

    limiter.reset("ip:1")

    assert limiter.is_allowed("ip:1") is True


def test_client_key_scopes_bucket_to_endpoint():
    limiter = RateLimiter(calls_per_window=1, window_seconds=600, enabled=True)
    login = client_key("10.0.0.1", "/api/auth/admin-login")
    validate = client_key("10.0.0.1", "/api/gift-codes/validate")

    assert login == "ip:10.0.0.1:/api/auth/admin-login"
    assert limiter.is_allowed(login) is True
    assert limiter.is_allowed(login) is False
    assert limiter.is_allowed(validate) is True


def test_limits_come_from_environment(monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_CALLS", "5")
    monkeypatch.setenv("RATE_LIMIT_WINDOW", "not-a-number")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "FALSE")

    limiter = RateLimiter()

    assert limiter.calls_per_window == 5
    assert limiter.window_seconds == 600
    assert limiter.enabled is False


def test_check_rate_limit_headers():
    limiter = RateLimiter(calls_per_window=2, window_seconds=60, enabled=True)

    with patch.object(rate_limiter, "_rate_limiter", limiter):
        allowed, headers = check_rate_limit("ip:1")
        check_rate_limit("ip:1")
        blocked, blocked_headers = check_rate_limit("ip:1")

    assert allowed is True
    assert headers["X-RateLimit-Limit"] == "2"
    assert headers["X-RateLimit-Remaining"] == "1"
    assert "X-RateLimit-Reset" in headers
    assert blocked is False
    assert blocked_headers["X-RateLimit-Remaining"] == "0"


def test_check_rate_limit_when_disabled_reports_full_allowance():
    limiter = RateLimiter(calls_per_window=3, window_seconds=60, enabled=False)

    with patch.object(rate_limiter, "_rate_limiter", limiter):
        allowed, headers = check_rate_limit("ip:1")

    assert allowed is True
    assert headers["X-RateLimit-Remaining"] == "3"
    assert "X-RateLimit-Reset" not in headers
