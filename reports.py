"""
Admin aggregation and export.

Everything here is a pure derivation over the current events, members and
posts. Inputs are never mutated. Percentages and averages fall back to 0.0
when the denominator is empty so no NaN or infinity reaches a report.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
import json
import logging
from typing import Iterable, Optional

from errors import ValidationError
from models import EVENT_STATUSES, Attendee, Event, Member, Post
from utils import dated_filename, generate_csv

EXPORT_FORMATS = ("csv", "json")
REPORT_TYPES = ("summary", "detailed")
DATE_RANGES = ("week", "month", "quarter", "year")

ACTIVE_WITHIN = timedelta(days=1)
OCCASIONAL_WITHIN = timedelta(days=6)
TITLE_LIMIT = 20

ATTENDEE_HEADERS = ["Name", "Email", "University ID", "Registration Date", "Status", "Waitlist Position"]
EVENT_HEADERS = ["Event Title", "Date", "Registered", "Capacity", "Waitlist", "Status"]
MEMBER_HEADERS = ["Name", "Email", "Role", "Events Attended", "Join Date", "Last Active"]
POST_HEADERS = ["Title", "Author", "Date", "Likes", "Comments", "Category"]

logger = logging.getLogger(__name__)


@dataclass
class ExportDocument:
    filename: str
    media_type: str
    content: str


def percentage(part: float, whole: float) -> float:
    if not whole:
        return 0.0
    return round(part / whole * 100, 1)


def average(total: float, count: int) -> float:
    if not count:
        return 0.0
    return round(total / count, 1)


def engagement_bucket(member: Member, now: datetime) -> str:
    idle = now - member.last_active
    if idle <= ACTIVE_WITHIN:
        return "active"
    if idle <= OCCASIONAL_WITHIN:
        return "occasional"
    return "inactive"


def analytics_summary(events: Iterable[Event], members: Iterable[Member], posts: Iterable[Post],
                      date_range: str = "month", now: Optional[datetime] = None) -> dict:
    """Headline numbers for the admin dashboard and the summary report."""
    events, members, posts = list(events), list(members), list(posts)
    now = now or datetime.now()
    _check_choice("date_range", date_range, DATE_RANGES)

    total_registrations = sum(e.registered for e in events)
    total_capacity = sum(e.capacity for e in events)
    registrants = set()
    for event in events:
        registrants.update(event.registered_users)
    member_ids = {m.id for m in members}

    return {
        "date_generated": now.isoformat(),
        "date_range": date_range,
        "total_members": len(members),
        "committee_members": sum(1 for m in members if m.is_committee),
        "active_members": sum(1 for m in members if engagement_bucket(m, now) == "active"),
        "total_events": len(events),
        "full_events": sum(1 for e in events if e.status == "full"),
        "total_registrations": total_registrations,
        "total_waitlist": sum(len(e.waitlist) for e in events),
        "total_posts": len(posts),
        "total_engagement": sum(p.like_count + p.comment_count for p in posts),
        "avg_event_attendance": average(total_registrations, len(events)),
        "registration_rate": percentage(len(registrants & member_ids), len(members)),
        "capacity_utilization": percentage(total_registrations, total_capacity),
    }


def popular_events(events: Iterable[Event], limit: int = 5) -> list[dict]:
    ranked = sorted(events, key=lambda e: e.registered, reverse=True)[:limit]
    return [{
        "name": e.title if len(e.title) <= TITLE_LIMIT else e.title[:TITLE_LIMIT] + "...",
        "registrations": e.registered,
        "capacity": e.capacity,
        "status": e.status,
    } for e in ranked]


def event_status_breakdown(events: Iterable[Event]) -> dict:
    events = list(events)
    return {status: sum(1 for e in events if e.status == status) for status in EVENT_STATUSES}


def member_engagement(members: Iterable[Member], now: Optional[datetime] = None) -> dict:
    now = now or datetime.now()
    buckets = {"active": 0, "occasional": 0, "inactive": 0}
    for member in members:
        buckets[engagement_bucket(member, now)] += 1
    return buckets


def top_members(members: Iterable[Member], limit: int = 5) -> list[dict]:
    ranked = sorted(members, key=lambda m: m.events_attended, reverse=True)[:limit]
    return [{"name": m.name.split(" ")[0], "events": m.events_attended, "role": m.role} for m in ranked]


def registration_trend(events: Iterable[Event]) -> list[dict]:
    """Registrations and event counts per calendar month, oldest first."""
    months = {}
    for event in events:
        key = (event.starts_at.year, event.starts_at.month)
        point = months.setdefault(key, {"month": event.starts_at.strftime("%b %Y"), "registrations": 0, "events": 0})
        point["registrations"] += event.registered
        point["events"] += 1
    return [months[key] for key in sorted(months)]


def dashboard_analytics(events, members, posts, date_range: str = "month", now: Optional[datetime] = None) -> dict:
    events, members, posts = list(events), list(members), list(posts)
    now = now or datetime.now()
    return {
        "summary": analytics_summary(events, members, posts, date_range, now),
        "popular_events": popular_events(events),
        "event_status": event_status_breakdown(events),
        "member_engagement": member_engagement(members, now),
        "top_members": top_members(members),
        "registration_trend": registration_trend(events),
    }


# Exports

def export_attendees(event: Event, attendees: Iterable[Attendee], fmt: str = "csv",
                     selected_ids: Optional[Iterable[int]] = None, today: Optional[date] = None) -> ExportDocument:
    """Attendee list for one event; limited to `selected_ids` when given."""
    _check_choice("format", fmt, EXPORT_FORMATS)
    rows = list(attendees)
    if selected_ids:
        selected = set(selected_ids)
        rows = [a for a in rows if a.id in selected]
    filename = dated_filename(f"{event.title}_attendees", fmt, today)
    logger.info(f"Exporting {len(rows)} attendees of event {event.id} as {fmt}")
    if fmt == "json":
        content = json.dumps({"event": event.display_details(), "attendees": [a.to_dict() for a in rows]}, indent=2)
        return ExportDocument(filename, "application/json", content)
    content = generate_csv(ATTENDEE_HEADERS, [[
        a.name,
        a.email,
        a.university_id,
        a.registration_date.strftime("%Y-%m-%d %H:%M") if a.registration_date else "",
        a.status,
        a.position,
    ] for a in rows])
    return ExportDocument(filename, "text/csv", content)


def detailed_report(events: Iterable[Event], members: Iterable[Member], posts: Iterable[Post]) -> dict:
    return {
        "events": [{
            "title": e.title,
            "date": e.date_display,
            "registered": e.registered,
            "capacity": e.capacity,
            "waitlist": len(e.waitlist),
            "status": e.status,
        } for e in events],
        "members": [{
            "name": m.name,
            "email": m.email,
            "role": m.role,
            "events_attended": m.events_attended,
            "join_date": m.join_date.strftime("%b %Y"),
            "last_active": m.last_active.strftime("%Y-%m-%d"),
        } for m in members],
        "posts": [{
            "title": p.title,
            "author": p.author_name,
            "date": p.created_at.strftime("%Y-%m-%d"),
            "likes": p.like_count,
            "comments": p.comment_count,
            "category": p.category,
        } for p in posts],
    }


def export_report(events, members, posts, fmt: str = "csv", report_type: str = "summary",
                  date_range: str = "month", now: Optional[datetime] = None) -> ExportDocument:
    """Summary or detailed analytics report as CSV or JSON."""
    _check_choice("format", fmt, EXPORT_FORMATS)
    _check_choice("report_type", report_type, REPORT_TYPES)
    events, members, posts = list(events), list(members), list(posts)
    now = now or datetime.now()
    media_type = "text/csv" if fmt == "csv" else "application/json"
    logger.info(f"Exporting {report_type} report as {fmt}")

    if report_type == "summary":
        data = analytics_summary(events, members, posts, date_range, now)
        filename = dated_filename("analytics_summary", fmt, now.date())
        if fmt == "csv":
            content = generate_csv(["Metric", "Value"], list(data.items()))
        else:
            content = json.dumps(data, indent=2)
        return ExportDocument(filename, media_type, content)

    data = detailed_report(events, members, posts)
    filename = dated_filename("detailed_report", fmt, now.date())
    if fmt == "json":
        return ExportDocument(filename, media_type, json.dumps(data, indent=2))
    sections = [
        ("EVENTS DATA", EVENT_HEADERS, data["events"]),
        ("MEMBERS DATA", MEMBER_HEADERS, data["members"]),
        ("POSTS DATA", POST_HEADERS, data["posts"]),
    ]
    content = "\n".join(
        f"{name}\n{generate_csv(headers, [list(row.values()) for row in rows])}"
        for name, headers, rows in sections
    )
    return ExportDocument(filename, media_type, content)


def _check_choice(field: str, value: str, choices: tuple):
    if value not in choices:
        raise ValidationError({field: f"Must be one of: {', '.join(choices)}"})
