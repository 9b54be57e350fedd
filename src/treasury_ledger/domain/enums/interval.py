from datetime import timedelta
from enum import Enum


class ChartInterval(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    def to_timedelta(self) -> timedelta:
        if self is ChartInterval.HOURLY:
            return timedelta(hours=1)
        if self is ChartInterval.DAILY:
            return timedelta(days=1)
        if self is ChartInterval.WEEKLY:
            return timedelta(weeks=1)
        return timedelta(days=30)  # approximate month
