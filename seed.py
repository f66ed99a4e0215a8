"""Demo data loaded at startup. Nothing here is persisted."""
from datetime import datetime, timedelta
import os

from dotenv import load_dotenv
from passlib.hash import bcrypt

from models import Event, Member, Post

load_dotenv()

DEMO_PASSWORD = os.getenv("DEMO_PASSWORD", "password123")


def _at(day: datetime, hour: int, minute: int = 0) -> datetime:
    return day.replace(hour=hour, minute=minute, second=0, microsecond=0)


def seed_portal(portal, now=None, password=DEMO_PASSWORD):
    """Populate the directory, registry and post board of a fresh portal."""
    now = now or datetime.now()
    domain = portal.directory.email_domain
    password_hash = bcrypt.hash(password)

    members = [
        (1, "Alex Chen", "committee", "S123456", 8, 400, 0),
        (2, "Sam Wilson", "member", "S123457", 5, 370, 0),
        (3, "Jamie Patel", "member", "S123458", 3, 280, 2),
        (4, "Taylor Kim", "member", "S123459", 7, 400, 0),
        (5, "Morgan Lee", "member", "S123460", 2, 250, 7),
        (6, "Jordan Smith", "member", "S123461", 4, 340, 3),
        (7, "Casey Brown", "committee", "S123462", 9, 430, 0),
        (8, "Riley Davis", "member", "S123463", 6, 310, 1),
        (999, "System Administrator", "admin", "S999999", 0, 500, 0),
    ]
    for member_id, name, role, university_id, attended, joined_days, idle_days in members:
        email = "admin" if role == "admin" else name.lower().replace(" ", ".")
        portal.directory.add_member(Member(
            id=member_id,
            name=name,
            email=f"{email}@{domain}",
            role=role,
            university_id=university_id,
            events_attended=attended,
            join_date=now - timedelta(days=joined_days),
            last_active=now - timedelta(days=idle_days),
        ), password_hash=password_hash)

    events = [
        Event(1, "Web Dev Workshop: React Basics", _at(now + timedelta(days=7), 18),
              "Turing Building, Room 304", 40,
              description="Learn React fundamentals with hands-on coding. Pizza provided!",
              registered_users={1, 2, 3}),
        Event(2, "Weekend Hackathon", _at(now + timedelta(days=14), 9),
              "Innovation Lab", 6, duration_hours=48,
              description="48-hour coding marathon with prizes for best projects.",
              registered_users={1, 2, 3, 4, 7, 8}, waitlist=[5, 6]),
        Event(3, "Git & GitHub Crash Course", _at(now + timedelta(days=10), 17, 30),
              "Online (Teams)", 100,
              description="Master version control for your projects.",
              registered_users={1, 4, 7}),
        Event(4, "AI Tools for Developers", _at(now + timedelta(days=25), 19),
              "Tech Hub, Room 208", 5,
              description="Exploring ChatGPT, Copilot, and other AI assistants.",
              registered_users={2, 3, 4, 8}),
    ]
    for offset, event in enumerate(events):
        event.organizer_id = 1
        event.organizer_name = "Alex Chen"
        event.created_at = now - timedelta(days=30 - offset)
        joined = now - timedelta(days=10)
        for user_id in sorted(event.registered_users) + event.waitlist:
            event.registered_at[user_id] = joined
            joined += timedelta(hours=1)
        portal.registry.add_event(event)

    posts = [
        Post(1, "Welcome to the New Semester!",
             "Our first meet-up is scheduled for next Friday at 6:00 PM in the Turing Building (Room 304). "
             "Pizza and drinks will be provided!", 1, "Alex Chen", "announcement", 24,
             created_at=now - timedelta(hours=2)),
        Post(2, "Weekend Hackathon Announcement",
             "48-hour hackathon starts this Saturday at 9 AM in the Innovation Lab. Prizes for top projects!",
             7, "Casey Brown", "event", 42, created_at=now - timedelta(days=1)),
        Post(3, "Project Group Forming - React/Node.js",
             "Looking for 3 more members for our open-source contribution project. React/Node.js experience preferred.",
             4, "Taylor Kim", "opportunity", 18, created_at=now - timedelta(days=3)),
        Post(4, "Study Session: Algorithms & Data Structures",
             "Weekly study session every Wednesday at 5 PM in Library Room 205. All years welcome.",
             1, "Alex Chen", "resource", 32, created_at=now - timedelta(days=5)),
        Post(5, "Summer Internships",
             "Summer internship applications are open. Deadline: April 15th. Apply through the careers portal.",
             7, "Casey Brown", "opportunity", 56, created_at=now - timedelta(days=7)),
    ]
    for post in posts:
        portal.posts.add_post(post)

    comments = [
        (3, "This sounds amazing! Can't wait for the pizza."),
        (2, "Will there be options for vegetarian dietary requirements?"),
        (4, "I can help with the React workshop if needed!"),
    ]
    for user_id, content in comments:
        portal.posts.add_comment(1, portal.directory.get(user_id), content)
