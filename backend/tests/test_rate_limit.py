"""
Tests for in-memory rate limiter middleware.

Tests: RateLimiter class — sliding window, cleanup, rate_limit dependency.
"""
import pytest

from middleware.rate_limit import RateLimiter


class TestRateLimiter:
    """Tests for the RateLimiter class."""

    @pytest.mark.unit
    def test_allows_requests_under_limit(self, fake_clock):
        """Requests under the limit should be allowed."""
        limiter = RateLimiter(clock=fake_clock)
        for _ in range(5):
            assert limiter.check("testkey", max_requests=5, window_seconds=60) is True

    @pytest.mark.unit
    def test_blocks_requests_over_limit(self, fake_clock):
        """Request exceeding the limit should be blocked."""
        limiter = RateLimiter(clock=fake_clock)
        for _ in range(3):
            limiter.check("testkey", max_requests=3, window_seconds=60)
        # 4th request should be blocked
        assert limiter.check("testkey", max_requests=3, window_seconds=60) is False

    @pytest.mark.unit
    def test_different_keys_independent(self, fake_clock):
        """Different keys should have independent limits."""
        limiter = RateLimiter(clock=fake_clock)
        for _ in range(3):
            limiter.check("key1", max_requests=3, window_seconds=60)
        assert limiter.check("key1", max_requests=3, window_seconds=60) is False
        assert limiter.check("key2", max_requests=3, window_seconds=60) is True

    @pytest.mark.unit
    def test_window_expiry(self, fake_clock):
        """Requests should be allowed again after the window expires."""
        limiter = RateLimiter(clock=fake_clock)
        for _ in range(2):
            limiter.check("testkey", max_requests=2, window_seconds=60)
        assert limiter.check("testkey", max_requests=2, window_seconds=60) is False

        fake_clock.advance(61)
        assert limiter.check("testkey", max_requests=2, window_seconds=60) is True

    @pytest.mark.unit
    def test_sliding_window(self, fake_clock):
        """Only the oldest request leaves the window first."""
        limiter = RateLimiter(clock=fake_clock)
        limiter.check("k", max_requests=2, window_seconds=60)
        fake_clock.advance(30)
        limiter.check("k", max_requests=2, window_seconds=60)
        fake_clock.advance(31)

        assert limiter.check("k", max_requests=2, window_seconds=60) is True
        assert limiter.check("k", max_requests=2, window_seconds=60) is False

    @pytest.mark.unit
    def test_remaining_count(self, fake_clock):
        """remaining() should reflect used quota."""
        limiter = RateLimiter(clock=fake_clock)
        assert limiter.remaining("k", max_requests=5, window_seconds=60) == 5
        limiter.check("k", max_requests=5, window_seconds=60)
        limiter.check("k", max_requests=5, window_seconds=60)
        assert limiter.remaining("k", max_requests=5, window_seconds=60) == 3

    @pytest.mark.unit
    def test_reset_clears_all_keys(self, fake_clock):
        limiter = RateLimiter(clock=fake_clock)
        limiter.check("k", max_requests=1, window_seconds=60)
        limiter.reset()
        assert limiter.check("k", max_requests=1, window_seconds=60) is True
