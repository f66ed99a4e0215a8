"""
Simulated email notifications for event registrations.

Nothing leaves the process: every message is logged and appended to an
in-memory history so the admin pages (and tests) can inspect what was sent.
A transport callable can be supplied to hook in a real sender later.
"""
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from dotenv import load_dotenv

load_dotenv()

SOCIETY_NAME = os.getenv("SOCIETY_NAME", "Solent Computing Society")
SIMULATION_FOOTER = "\n\n---\n(This is a simulation. In production, this would be a real email.)"

logger = logging.getLogger(__name__)


@dataclass
class EmailMessage:
    to: str
    subject: str
    body: str
    event_title: Optional[str] = None
    event_date: Optional[str] = None
    event_location: Optional[str] = None
    sent_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "to": self.to,
            "subject": self.subject,
            "body": self.body,
            "event_title": self.event_title,
            "event_date": self.event_date,
            "event_location": self.event_location,
            "sent_at": self.sent_at.isoformat(),
        }


class EmailNotifier:
    def __init__(self, transport: Optional[Callable[[EmailMessage], None]] = None, society_name: str = SOCIETY_NAME):
        """Create a notifier. `transport` is called for each message and may raise to signal failure."""
        self.transport = transport
        self.society_name = society_name
        self._sent: list[EmailMessage] = []

    def send(self, to: str, subject: str, body: str, event_title=None, event_date=None, event_location=None) -> bool:
        """Send (simulate) an email. Returns False if the transport failed."""
        message = EmailMessage(to, subject, body + SIMULATION_FOOTER, event_title, event_date, event_location)
        if self.transport is not None:
            try:
                self.transport(message)
            except Exception as e:
                logger.error(f"Email to {to} failed: {e}")
                return False
        self._sent.append(message)
        logger.info(f"[SIMULATED EMAIL] to={to} subject={subject!r}")
        return True

    def history(self) -> list[EmailMessage]:
        """All sent emails, oldest first."""
        return list(self._sent)

    def clear(self):
        self._sent.clear()

    def _signature(self) -> str:
        return f"\n\nBest regards,\n{self.society_name}"

    # Templates

    def send_registration_confirmation(self, to, event_title, event_date, event_location) -> bool:
        body = (
            f'Hello,\n\nYour registration for "{event_title}" has been confirmed!\n\n'
            f"Event Details:\n- Date: {event_date}\n- Location: {event_location}\n\n"
            "Please arrive 10 minutes early. Bring your student ID."
            + self._signature()
        )
        return self.send(to, f"Registration Confirmed: {event_title}", body, event_title, event_date, event_location)

    def send_waitlist_placement(self, to, event_title, event_date, event_location, position=None) -> bool:
        place = f" You are number {position} in the queue." if position else ""
        body = (
            f'Hello,\n\nYou have been added to the waitlist for "{event_title}".{place}\n\n'
            f"Event Details:\n- Date: {event_date}\n- Location: {event_location}\n\n"
            "We will notify you if a spot becomes available."
            + self._signature()
        )
        return self.send(to, f"You're on the waitlist for: {event_title}", body, event_title, event_date, event_location)

    def send_cancellation(self, to, event_title, event_date) -> bool:
        body = (
            f'Hello,\n\nYour registration for "{event_title}" ({event_date}) has been cancelled.\n\n'
            "If this was a mistake, you can re-register if spots are still available."
            + self._signature()
        )
        return self.send(to, f"Registration Cancelled: {event_title}", body, event_title, event_date)

    def send_waitlist_promotion(self, to, event_title, event_date, event_location) -> bool:
        body = (
            f'Great news!\n\nA spot has opened up for "{event_title}" and you are now registered.\n\n'
            f"Event Details:\n- Date: {event_date}\n- Location: {event_location}\n\n"
            "If you can no longer attend, please cancel so the next person on the waitlist can take your place."
            + self._signature()
        )
        return self.send(to, f"Spot Available: {event_title}", body, event_title, event_date, event_location)

    def send_reminder(self, to, event_title, event_date, event_location, days_until: int) -> bool:
        plural = "" if days_until == 1 else "s"
        body = (
            "Friendly reminder about your upcoming event!\n\n"
            f"Event: {event_title}\nDate: {event_date}\nLocation: {event_location}\n\n"
            "Please remember to bring any required materials."
            + self._signature()
        )
        return self.send(to, f"Reminder: {event_title} in {days_until} day{plural}", body, event_title, event_date, event_location)
