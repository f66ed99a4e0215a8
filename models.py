from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Literal, Optional

Role = Literal["member", "committee", "admin"]
EventStatus = Literal["open", "almost_full", "full"]
AttendeeStatus = Literal["registered", "waitlisted", "attended", "cancelled"]
PostCategory = Literal["announcement", "event", "opportunity", "resource", "reminder"]

ROLES = ("member", "committee", "admin")
EVENT_STATUSES = ("open", "almost_full", "full")
ATTENDEE_STATUSES = ("registered", "waitlisted", "attended", "cancelled")
POST_CATEGORIES = ("announcement", "event", "opportunity", "resource", "reminder")

ALMOST_FULL_RATIO = 0.8


def derive_status(registered: int, capacity: int) -> EventStatus:
    """Classify an event from its registered count and capacity."""
    if registered >= capacity:
        return "full"
    if registered >= capacity * ALMOST_FULL_RATIO:
        return "almost_full"
    return "open"


@dataclass
class Event:
    id: int
    title: str
    starts_at: datetime
    location: str
    capacity: int
    description: str = ""
    duration_hours: float = 2.0
    organizer_id: Optional[int] = None
    organizer_name: str = ""
    created_at: datetime = field(default_factory=datetime.now)
    registered_users: set = field(default_factory=set)
    waitlist: list = field(default_factory=list)
    attended: set = field(default_factory=set)
    cancelled: set = field(default_factory=set)
    registered_at: dict = field(default_factory=dict)

    @property
    def registered(self) -> int:
        return len(self.registered_users)

    @property
    def status(self) -> EventStatus:
        return derive_status(self.registered, self.capacity)

    @property
    def ends_at(self) -> datetime:
        return self.starts_at + timedelta(hours=self.duration_hours)

    @property
    def date_display(self) -> str:
        """Human readable date, e.g. 'Fri, Mar 15 • 6:00 PM'."""
        hour = self.starts_at.strftime("%I").lstrip("0")
        return f"{self.starts_at:%a, %b} {self.starts_at.day} • {hour}:{self.starts_at:%M %p}"

    def waitlist_position(self, user_id: int) -> Optional[int]:
        if user_id in self.waitlist:
            return self.waitlist.index(user_id) + 1
        return None

    def display_details(self) -> dict:
        """Return the event as a JSON friendly dict."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "date": self.date_display,
            "starts_at": self.starts_at.isoformat(),
            "duration_hours": self.duration_hours,
            "location": self.location,
            "capacity": self.capacity,
            "registered": self.registered,
            "waitlist": len(self.waitlist),
            "status": self.status,
            "organizer_name": self.organizer_name,
        }


@dataclass
class Member:
    id: int
    name: str
    email: str
    role: Role = "member"
    university_id: str = ""
    events_attended: int = 0
    join_date: datetime = field(default_factory=datetime.now)
    last_active: datetime = field(default_factory=datetime.now)

    @property
    def is_committee(self) -> bool:
        return self.role in ("committee", "admin")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "university_id": self.university_id,
            "events_attended": self.events_attended,
            "join_date": self.join_date.isoformat(),
            "last_active": self.last_active.isoformat(),
        }


@dataclass
class Post:
    id: int
    title: str
    content: str
    author_id: int
    author_name: str
    category: PostCategory = "announcement"
    like_count: int = 0
    comment_count: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    scheduled_for: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "author_id": self.author_id,
            "author_name": self.author_name,
            "category": self.category,
            "like_count": self.like_count,
            "comment_count": self.comment_count,
            "created_at": self.created_at.isoformat(),
            "scheduled_for": self.scheduled_for.isoformat() if self.scheduled_for else None,
        }


@dataclass
class Comment:
    id: int
    post_id: int
    user_id: int
    user_name: str
    content: str
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class Attendee:
    id: int
    name: str
    email: str
    registration_date: Optional[datetime]
    status: AttendeeStatus
    university_id: str = ""
    position: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "university_id": self.university_id,
            "registration_date": self.registration_date.isoformat() if self.registration_date else None,
            "status": self.status,
            "position": self.position,
        }


@dataclass
class Membership:
    status: Literal["registered", "waitlisted"]
    position: Optional[int] = None
