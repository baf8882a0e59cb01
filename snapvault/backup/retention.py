"""
Retention policy for backup artifacts.

Pure age arithmetic, kept apart from the code that walks the backup
directory so eviction rules can be tested without touching disk.
"""

from dataclasses import dataclass
from datetime import datetime


SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class RetentionWindow:
    """
    Number of days an artifact is kept.

    days=0 makes every artifact with a positive age eligible for eviction.
    """
    days: int

    def __post_init__(self):
        if isinstance(self.days, bool) or not isinstance(self.days, int):
            raise ValueError(f"Retention days must be an integer, got {self.days!r}")
        if self.days < 0:
            raise ValueError(f"Retention days must be non-negative, got {self.days}")


class RetentionPolicy:
    """Age-based eviction decisions."""

    @staticmethod
    def age_in_days(created_at: datetime, now: datetime) -> float:
        return (now - created_at).total_seconds() / SECONDS_PER_DAY

    @staticmethod
    def is_expired(created_at: datetime, now: datetime, window: RetentionWindow) -> bool:
        """
        Decide whether an artifact is past its retention window.

        Args:
            created_at: When the artifact was created
            now: Reference time (same timezone awareness as created_at)
            window: Retention window

        Returns:
            True if the artifact's age in days is strictly greater than window.days
        """
        return RetentionPolicy.age_in_days(created_at, now) > window.days
