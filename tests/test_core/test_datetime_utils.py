"""Tests for datetime_utils."""

from datetime import datetime, timedelta

from emailsleuth.core.datetime_utils import epoch_millis, is_older_than, utc_now


class TestUtcNow:
    """Tests for utc_now."""

    def test_returns_naive_datetime(self):
        """Should return a naive datetime so stored timestamps compare cleanly."""
        assert utc_now().tzinfo is None


class TestIsOlderThan:
    """Tests for is_older_than."""

    def test_fresh_timestamp(self):
        """Should return False inside the TTL."""
        now = datetime(2026, 1, 15, 12, 0, 0)
        stored = now - timedelta(minutes=59)
        assert is_older_than(stored, timedelta(hours=1), now=now) is False

    def test_expired_at_boundary(self):
        """Exactly TTL old counts as expired."""
        now = datetime(2026, 1, 15, 12, 0, 0)
        stored = now - timedelta(hours=1)
        assert is_older_than(stored, timedelta(hours=1), now=now) is True

    def test_defaults_to_current_time(self):
        """Should compare against utc_now when no reference is given."""
        stored = utc_now() - timedelta(days=2)
        assert is_older_than(stored, timedelta(hours=1)) is True


class TestEpochMillis:
    """Tests for epoch_millis."""

    def test_epoch_start(self):
        assert epoch_millis(datetime(1970, 1, 1)) == 0

    def test_milliseconds(self):
        assert epoch_millis(datetime(1970, 1, 1, 0, 0, 1, 500_000)) == 1500
