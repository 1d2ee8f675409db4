"""Data models for rsspush."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Subscription:
    """One configured feed to poll."""

    title: str
    url: str
    full_content: bool = False


@dataclass(frozen=True)
class FeedItem:
    """Represents a single RSS/Atom feed entry."""

    title: str
    link: str
    author: str | None = None
    published: datetime | None = None
    updated: datetime | None = None
    feed_url: str = ""


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval ``[start, end)`` of "recent" timestamps."""

    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    @property
    def is_empty(self) -> bool:
        return self.start >= self.end
