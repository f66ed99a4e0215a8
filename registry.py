import heapq
import logging
from collections import defaultdict
from datetime import datetime
from typing import Optional

from intervaltree import IntervalTree

from auth import Directory
from errors import EventFull, NotFound, NotRegistered, NotWaitlisted, ValidationError
from models import ATTENDEE_STATUSES, Attendee, Event, Member, Membership
from notifier import EmailNotifier

logger = logging.getLogger(__name__)


def _venue_key(location: str) -> Optional[str]:
    """Normalized venue name, or None for online events which never clash."""
    key = " ".join(location.lower().split())
    if not key or key.startswith("online"):
        return None
    return key


class Scheduler:
    def __init__(self):
        """Track event time windows per venue and a queue of upcoming events."""
        self.event_queue = []
        self.intervals = defaultdict(IntervalTree)

    def check_conflict(self, event: Event, ignore_id: Optional[int] = None):
        """Raise ValidationError if another event occupies the same venue at the same time."""
        venue = _venue_key(event.location)
        if venue is None:
            return
        start_ts = event.starts_at.timestamp()
        end_ts = event.ends_at.timestamp()
        for iv in self.intervals[venue][start_ts:end_ts]:
            other = iv.data
            if other.id != ignore_id:
                raise ValidationError({
                    "starts_at": f"{event.location} is already booked for {other.title} at {other.date_display}"
                })

    def schedule_event(self, event: Event):
        """Schedule an event after checking for venue conflicts."""
        self.check_conflict(event, ignore_id=event.id)
        venue = _venue_key(event.location)
        if venue is not None:
            self.intervals[venue][event.starts_at.timestamp():event.ends_at.timestamp()] = event
        heapq.heappush(self.event_queue, (event.starts_at, event.id))

    def remove_event(self, event_id: int):
        """Remove an event from the schedule."""
        for tree in self.intervals.values():
            to_remove = [iv for iv in tree if iv.data.id == event_id]
            for iv in to_remove:
                tree.remove(iv)
        self.event_queue = [(t, eid) for t, eid in self.event_queue if eid != event_id]
        heapq.heapify(self.event_queue)

    def get_next_event(self, now: Optional[datetime] = None) -> tuple[datetime, int] | None:
        """Retrieve the next scheduled event without dropping past ones."""
        now = now or datetime.now()
        future = [entry for entry in self.event_queue if entry[0] >= now]
        return min(future) if future else None

    def upcoming(self, now: Optional[datetime] = None, limit: int = 3) -> list[int]:
        """Ids of the next `limit` events starting at or after `now`."""
        now = now or datetime.now()
        future = [entry for entry in self.event_queue if entry[0] >= now]
        return [event_id for _, event_id in heapq.nsmallest(limit, future)]


class EventRegistry:
    def __init__(self, notifier: EmailNotifier, directory: Directory, scheduler: Optional[Scheduler] = None):
        """In-memory events with registration, FIFO waitlist and promotion."""
        self.notifier = notifier
        self.directory = directory
        self.scheduler = scheduler or Scheduler()
        self._events: dict[int, Event] = {}
        self._next_id = 1

    # Event management

    def add_event(self, event: Event) -> Event:
        """Add a fully built event, e.g. seed data."""
        if event.id in self._events:
            raise ValidationError({"id": f"Event {event.id} already exists"})
        self.scheduler.schedule_event(event)
        self._events[event.id] = event
        self._next_id = max(self._next_id, event.id + 1)
        return event

    def create_event(self, title: str, starts_at: datetime, location: str, capacity: int,
                     description: str = "", duration_hours: float = 2.0,
                     organizer: Optional[Member] = None) -> Event:
        """Create a new, empty event."""
        _validate_event_fields(title=title, location=location, capacity=capacity, duration_hours=duration_hours)
        event = Event(
            id=self._next_id,
            title=title.strip(),
            starts_at=starts_at,
            location=location.strip(),
            capacity=capacity,
            description=description,
            duration_hours=duration_hours,
            organizer_id=organizer.id if organizer else None,
            organizer_name=organizer.name if organizer else "",
        )
        self.add_event(event)
        logger.info(f"Event {event.id} ({event.title}) created")
        return event

    def get_event(self, event_id: int) -> Event:
        event = self._events.get(event_id)
        if event is None:
            raise NotFound(f"Event {event_id} not found")
        return event

    def list_events(self) -> list[Event]:
        return sorted(self._events.values(), key=lambda e: (e.starts_at, e.id))

    def update_event(self, event_id: int, title=None, description=None, starts_at=None,
                     duration_hours=None, location=None, capacity=None) -> Event:
        """Edit an event. Capacity changes keep the registered set and waitlist consistent."""
        event = self.get_event(event_id)
        _validate_event_fields(title=title, location=location, capacity=capacity, duration_hours=duration_hours)
        if capacity is not None and capacity < event.registered:
            raise ValidationError({
                "capacity": f"Capacity cannot be lower than the {event.registered} registered attendees"
            })

        if starts_at is not None or duration_hours is not None or location is not None:
            moved = Event(
                id=event.id,
                title=event.title,
                starts_at=starts_at or event.starts_at,
                location=(location or event.location).strip(),
                capacity=event.capacity,
                duration_hours=duration_hours or event.duration_hours,
            )
            self.scheduler.check_conflict(moved, ignore_id=event.id)
            self.scheduler.remove_event(event.id)
            event.starts_at = moved.starts_at
            event.location = moved.location
            event.duration_hours = moved.duration_hours
            self.scheduler.schedule_event(event)

        if title is not None:
            event.title = title.strip()
        if description is not None:
            event.description = description
        if capacity is not None:
            event.capacity = capacity
            self._fill_from_waitlist(event)
        logger.info(f"Event {event_id} updated")
        return event

    def delete_event(self, event_id: int):
        self.get_event(event_id)
        self.scheduler.remove_event(event_id)
        del self._events[event_id]
        logger.info(f"Event {event_id} deleted")

    # Registration

    def register(self, event_id: int, user_id: int) -> Membership:
        """Register a user, or queue them on the waitlist when the event is full."""
        event = self.get_event(event_id)
        if user_id in event.registered_users:
            return Membership("registered")
        if user_id in event.waitlist:
            return Membership("waitlisted", event.waitlist_position(user_id))

        event.cancelled.discard(user_id)
        event.registered_at[user_id] = datetime.now()
        if event.registered < event.capacity:
            event.registered_users.add(user_id)
            logger.info(f"User {user_id} registered for event {event_id} ({event.status})")
            self._notify(user_id, self.notifier.send_registration_confirmation,
                         event.title, event.date_display, event.location)
            return Membership("registered")

        event.waitlist.append(user_id)
        position = len(event.waitlist)
        logger.info(f"User {user_id} waitlisted for event {event_id} at position {position}")
        self._notify(user_id, self.notifier.send_waitlist_placement,
                     event.title, event.date_display, event.location, position)
        return Membership("waitlisted", position)

    def cancel(self, event_id: int, user_id: int) -> Optional[int]:
        """Cancel a registration or waitlist entry. Returns the id of a promoted user, if any."""
        event = self.get_event(event_id)
        promoted = None
        if user_id in event.registered_users:
            event.registered_users.discard(user_id)
            if user_id in event.attended:
                event.attended.discard(user_id)
                member = self.directory.get(user_id)
                if member and member.events_attended > 0:
                    member.events_attended -= 1
            promoted_ids = self._fill_from_waitlist(event)
            promoted = promoted_ids[0] if promoted_ids else None
        elif user_id in event.waitlist:
            event.waitlist.remove(user_id)
        else:
            raise NotRegistered(f"User {user_id} is not registered for {event.title}")

        event.cancelled.add(user_id)
        logger.info(f"User {user_id} cancelled for event {event_id} ({event.status})")
        self._notify(user_id, self.notifier.send_cancellation, event.title, event.date_display)
        return promoted

    def promote_from_waitlist(self, event_id: int, user_id: int, override_capacity: bool = False) -> Event:
        """Move a waitlisted user to registered, in any order. Over capacity only when overridden."""
        event = self.get_event(event_id)
        if user_id not in event.waitlist:
            raise NotWaitlisted(f"User {user_id} is not on the waitlist for {event.title}")
        if event.registered >= event.capacity and not override_capacity:
            raise EventFull(f"{event.title} is full; promote with override to overbook")
        event.waitlist.remove(user_id)
        event.registered_users.add(user_id)
        if event.registered > event.capacity:
            logger.warning(f"Event {event_id} overbooked: {event.registered}/{event.capacity}")
        logger.info(f"User {user_id} promoted from waitlist for event {event_id}")
        self._notify(user_id, self.notifier.send_waitlist_promotion,
                     event.title, event.date_display, event.location)
        return event

    def mark_attended(self, event_id: int, user_id: int) -> Event:
        event = self.get_event(event_id)
        if user_id not in event.registered_users:
            raise NotRegistered(f"User {user_id} is not registered for {event.title}")
        if user_id not in event.attended:
            event.attended.add(user_id)
            member = self.directory.get(user_id)
            if member:
                member.events_attended += 1
        return event

    def membership(self, event_id: int, user_id: int) -> Optional[Membership]:
        event = self.get_event(event_id)
        if user_id in event.registered_users:
            return Membership("registered")
        if user_id in event.waitlist:
            return Membership("waitlisted", event.waitlist_position(user_id))
        return None

    def events_for(self, user_id: int) -> list[tuple[Event, Membership]]:
        """Events the user is registered or waitlisted for, soonest first."""
        result = []
        for event in self.list_events():
            membership = self.membership(event.id, user_id)
            if membership:
                result.append((event, membership))
        return result

    def attendees(self, event_id: int, status: Optional[str] = None, search: Optional[str] = None) -> list[Attendee]:
        """Admin view of everyone related to an event, optionally filtered."""
        event = self.get_event(event_id)
        if status is not None and status != "all" and status not in ATTENDEE_STATUSES:
            raise ValidationError({"status": f"Unknown attendee status '{status}'"})

        rows = []
        for user_id in sorted(event.registered_users, key=lambda uid: (event.registered_at.get(uid, datetime.min), uid)):
            rows.append(self._attendee(event, user_id, "attended" if user_id in event.attended else "registered"))
        for position, user_id in enumerate(event.waitlist, start=1):
            rows.append(self._attendee(event, user_id, "waitlisted", position))
        for user_id in sorted(event.cancelled):
            rows.append(self._attendee(event, user_id, "cancelled"))

        if status and status != "all":
            rows = [a for a in rows if a.status == status]
        if search and search.strip():
            term = search.strip().lower()
            rows = [
                a for a in rows
                if term in a.name.lower() or term in a.email.lower() or term in a.university_id.lower()
            ]
        return rows

    def send_reminders(self, event_id: int, user_ids: Optional[list[int]] = None, now: Optional[datetime] = None) -> int:
        """Email registered users (or the selected ones) about the event. Returns the number sent."""
        event = self.get_event(event_id)
        now = now or datetime.now()
        days_until = max((event.starts_at.date() - now.date()).days, 0)
        targets = event.registered_users if user_ids is None else [u for u in user_ids if u in event.registered_users]
        sent = 0
        for user_id in sorted(targets):
            if self._notify(user_id, self.notifier.send_reminder,
                            event.title, event.date_display, event.location, days_until):
                sent += 1
        logger.info(f"Sent {sent} reminders for event {event_id}")
        return sent

    # Helpers

    def _fill_from_waitlist(self, event: Event) -> list[int]:
        """Promote from the head of the waitlist while seats are free."""
        promoted = []
        while event.waitlist and event.registered < event.capacity:
            user_id = event.waitlist.pop(0)
            event.registered_users.add(user_id)
            promoted.append(user_id)
            logger.info(f"User {user_id} promoted from waitlist for event {event.id}")
            self._notify(user_id, self.notifier.send_waitlist_promotion,
                         event.title, event.date_display, event.location)
        return promoted

    def _notify(self, user_id: int, template, *args) -> bool:
        """Send a templated email; failures never undo the registry change."""
        email = self.directory.email_for(user_id)
        if email is None:
            logger.warning(f"No email on file for user {user_id}; notification skipped")
            return False
        delivered = template(email, *args)
        if not delivered:
            logger.warning(f"Notification to user {user_id} was not delivered")
        return delivered

    def _attendee(self, event: Event, user_id: int, status: str, position: Optional[int] = None) -> Attendee:
        member = self.directory.get(user_id)
        return Attendee(
            id=user_id,
            name=member.name if member else f"Member #{user_id}",
            email=member.email if member else "",
            university_id=member.university_id if member else "",
            registration_date=event.registered_at.get(user_id),
            status=status,
            position=position,
        )


def _validate_event_fields(title=None, location=None, capacity=None, duration_hours=None):
    errors = {}
    if title is not None and not title.strip():
        errors["title"] = "Event title is required"
    if location is not None and not location.strip():
        errors["location"] = "Location is required"
    if capacity is not None and capacity < 1:
        errors["capacity"] = "Capacity must be at least 1"
    if duration_hours is not None and duration_hours <= 0:
        errors["duration_hours"] = "Duration must be positive"
    if errors:
        raise ValidationError(errors)
