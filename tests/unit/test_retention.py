"""
Unit tests for retention policy (snapvault/backup/retention.py).

Pure date arithmetic; no filesystem involved.
"""

from datetime import datetime, timedelta, timezone

import pytest

from snapvault.backup.retention import RetentionPolicy, RetentionWindow


NOW = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def created(days_ago, hours=0):
    return NOW - timedelta(days=days_ago, hours=hours)


class TestRetentionWindow:
    """Test RetentionWindow validation."""

    def test_accepts_zero(self):
        assert RetentionWindow(0).days == 0

    def test_rejects_negative(self):
        with pytest.raises(ValueError, match='non-negative'):
            RetentionWindow(-1)

    @pytest.mark.parametrize('value', [1.5, '30', True, None])
    def test_rejects_non_integers(self, value):
        with pytest.raises(ValueError):
            RetentionWindow(value)


class TestIsExpired:
    """Test RetentionPolicy.is_expired()."""

    @pytest.mark.parametrize('age_days,expected', [
        (10, False),
        (29, False),
        (31, True),
        (90, True),
    ])
    def test_thirty_day_window(self, age_days, expected):
        """Test the 10/29/31/90 day scenario against a 30 day window."""
        assert RetentionPolicy.is_expired(created(age_days), NOW, RetentionWindow(30)) is expected

    def test_exactly_at_window_is_kept(self):
        """Test an artifact exactly window.days old is not expired."""
        assert not RetentionPolicy.is_expired(created(30), NOW, RetentionWindow(30))

    def test_just_past_window_is_expired(self):
        assert RetentionPolicy.is_expired(created(30, hours=1), NOW, RetentionWindow(30))

    def test_zero_days_expires_everything_older_than_now(self):
        """Test days=0 prunes any artifact with a positive age."""
        window = RetentionWindow(0)

        assert RetentionPolicy.is_expired(NOW - timedelta(minutes=1), NOW, window)
        assert RetentionPolicy.is_expired(created(0, hours=5), NOW, window)

    def test_future_artifact_is_not_expired(self):
        """Test clock skew (artifact from the future) never triggers deletion."""
        assert not RetentionPolicy.is_expired(NOW + timedelta(days=2), NOW, RetentionWindow(0))

    @pytest.mark.parametrize('window_days', [0, 1, 7, 30, 365])
    def test_monotonic_in_age(self, window_days):
        """Test once expired at age A, expired at every greater age."""
        window = RetentionWindow(window_days)
        ages = [a / 4 for a in range(0, 4 * 400)]
        decisions = [RetentionPolicy.is_expired(NOW - timedelta(days=a), NOW, window) for a in ages]

        first_expired = decisions.index(True)
        assert all(decisions[first_expired:])
        assert not any(decisions[:first_expired])

    def test_age_in_days(self):
        assert RetentionPolicy.age_in_days(created(2, hours=12), NOW) == pytest.approx(2.5)
