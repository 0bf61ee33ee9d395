"""
Unit Tests for Rate Limiting
============================
"""

import pytest


class TestFixedWindowLimiter:
    """Tests for the fixed-window limiter."""

    def test_allows_up_to_rate(self, clock):
        from accessotp.ratelimit import FixedWindowLimiter

        limiter = FixedWindowLimiter(rate=3, window=60, clock=clock)
        results = [limiter.check("ip:1") for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert results[3].retry_after == 60

    def test_window_resets(self, clock):
        """A new window starts with a fresh quota."""
        from accessotp.ratelimit import FixedWindowLimiter

        limiter = FixedWindowLimiter(rate=1, window=60, clock=clock)
        assert limiter.check("ip:1").allowed is True
        assert limiter.check("ip:1").allowed is False

        clock.advance(seconds=60)

        assert limiter.check("ip:1").allowed is True

    def test_keys_are_independent(self, clock):
        from accessotp.ratelimit import FixedWindowLimiter

        limiter = FixedWindowLimiter(rate=1, window=60, clock=clock)

        assert limiter.check("ip:1").allowed is True
        assert limiter.check("ip:2").allowed is True

    def test_headers(self, clock):
        from accessotp.ratelimit import FixedWindowLimiter

        limiter = FixedWindowLimiter(rate=1, window=60, clock=clock)
        allowed = limiter.check("ip:1")
        denied = limiter.check("ip:1")

        assert "Retry-After" not in allowed.headers()
        assert denied.headers()["X-RateLimit-Limit"] == "1"
        assert denied.headers()["X-RateLimit-Remaining"] == "0"
        assert denied.headers()["Retry-After"] == "60"

    def test_key_format(self):
        from accessotp.ratelimit import FixedWindowLimiter

        assert FixedWindowLimiter.key("otp", "10.0.0.1") == "ratelimit:otp:10.0.0.1"

    def test_rejects_invalid_rate(self):
        from accessotp.ratelimit import FixedWindowLimiter

        with pytest.raises(ValueError):
            FixedWindowLimiter(rate=0)
