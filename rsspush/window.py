"""Look-back window calculation."""

from datetime import UTC, datetime, timedelta

from .models import TimeWindow


def truncate_to_hour(moment: datetime) -> datetime:
    """Zero the minutes, seconds and microseconds of ``moment``."""
    return moment.replace(minute=0, second=0, microsecond=0)


def compute_window(now: datetime, lookback_hours: int) -> TimeWindow:
    """Compute the window of "recent" items for a run.

    ``start`` is ``now`` minus the look-back, ``end`` is ``now``; both are
    truncated to the hour. A look-back of zero or less gives an empty window.
    """
    start = truncate_to_hour(now - timedelta(hours=lookback_hours))
    end = truncate_to_hour(now)
    return TimeWindow(start=start, end=end)


def current_window(lookback_hours: int) -> TimeWindow:
    """Window ending at the current UTC hour."""
    return compute_window(datetime.now(UTC), lookback_hours)
