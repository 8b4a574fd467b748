"""Interface definitions for subscribers and newsletters."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List
from enum import Enum

from ..ingestion.interfaces import Article


class NewsletterStatus(Enum):
    """Lifecycle of a prepared newsletter."""
    SCHEDULED = "scheduled"
    SENT = "sent"
    FAILED = "failed"

    def can_transition_to(self, new_status: "NewsletterStatus") -> bool:
        return self == NewsletterStatus.SCHEDULED and new_status in (
            NewsletterStatus.SENT, NewsletterStatus.FAILED
        )


@dataclass(frozen=True)
class PreferredSendTime:
    """A weekly send slot. day_of_week uses Sunday = 0."""
    day_of_week: int
    hour: int

    def to_dict(self) -> dict:
        return {"dayOfWeek": self.day_of_week, "hour": self.hour}


DEFAULT_PREFERRED_SEND_TIMES = [PreferredSendTime(day_of_week=5, hour=9)]


@dataclass
class Subscriber:
    """A newsletter subscriber and their preferences."""
    email: str
    id: Optional[int] = None
    full_name: str = ""
    selected_counties: List[str] = field(default_factory=list)
    selected_cities: List[str] = field(default_factory=list)
    interests: str = ""
    timezone: Optional[str] = None
    preferred_send_times: List[PreferredSendTime] = field(default_factory=list)
    is_active: bool = True
    subscribed_at: Optional[datetime] = None

    @property
    def first_name(self) -> str:
        return self.full_name.split(" ")[0] if self.full_name else ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "selected_counties": self.selected_counties,
            "selected_cities": self.selected_cities,
            "interests": self.interests,
            "timezone": self.timezone,
            "preferred_send_times": [t.to_dict() for t in self.preferred_send_times],
            "is_active": self.is_active,
            "subscribed_at": self.subscribed_at.isoformat() if self.subscribed_at else None,
        }


@dataclass
class NewsletterSelection:
    """Articles chosen for one subscriber."""
    national: List[Article] = field(default_factory=list)
    local: List[Article] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.national and not self.local

    @property
    def links(self) -> List[str]:
        return list(dict.fromkeys(a.link for a in self.national + self.local))


@dataclass
class Newsletter:
    """A prepared newsletter row."""
    id: int
    subscriber_email: str
    status: NewsletterStatus
    scheduled_send_at: datetime
    sent_at: Optional[datetime] = None
    subject: Optional[str] = None
    national: List[Article] = field(default_factory=list)
    local: List[Article] = field(default_factory=list)


class NoArticlesError(Exception):
    """No articles matched the subscriber's preferences."""


class DeliveryError(Exception):
    """The email could not be delivered."""
