from fastapi import FastAPI, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse
from fastapi.security import OAuth2PasswordBearer
from fastapi import status
from pydantic import BaseModel, field_validator
from typing import Optional, List, Literal
from datetime import datetime
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
import os

from database import Database
from errors import PortalError, RedirectRequired, ValidationError
from models import Member
from portal import Portal
import reports
from session import DASHBOARD_PATH, SessionContext, guard
from utils import combine_date_time

load_dotenv()  # Load variables from .env file
DATABASE_PATH = os.getenv("DATABASE_PATH", "portal.db")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# OAuth2 scheme; a missing token is an unauthenticated session, not an error
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/login", auto_error=False)

# Logging
logging.basicConfig(level=getattr(logging, LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)


# -------------------------------
# Schemas
# -------------------------------
class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


class EventCreate(BaseModel):
    title: str
    description: str
    date: str
    time: str = "18:00"
    location: str
    capacity: int = 30
    duration_hours: float = 2.0

    @field_validator("description")
    @classmethod
    def description_required(cls, v):
        if not v.strip():
            raise ValueError("Description is required")
        return v

    class Config:
        json_schema_extra = {
            "example": {
                "title": "Web Development Workshop",
                "description": "Build your first React app.",
                "date": "2025-05-01",
                "time": "18:00",
                "location": "Turing Building, Room 304",
                "capacity": 30,
            }
        }


class EventUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    location: Optional[str] = None
    capacity: Optional[int] = None
    duration_hours: Optional[float] = None


class PostCreate(BaseModel):
    title: str
    content: str
    category: Literal["announcement", "event", "opportunity", "resource", "reminder"] = "announcement"
    schedule_for_later: bool = False
    scheduled_date: Optional[str] = None
    scheduled_time: str = "12:00"


class PostUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    category: Optional[Literal["announcement", "event", "opportunity", "resource", "reminder"]] = None
    scheduled_date: Optional[str] = None
    scheduled_time: str = "12:00"


class CommentCreate(BaseModel):
    content: str


class ReminderRequest(BaseModel):
    user_ids: Optional[List[int]] = None


# -------------------------------
# Guards
# -------------------------------
def get_portal(request: Request) -> Portal:
    return request.app.state.portal


def get_session(token: Optional[str] = Depends(oauth2_scheme), portal: Portal = Depends(get_portal)) -> SessionContext:
    """Resolve the calling client's session from its bearer token."""
    return portal.open_session(token)


def _guarded(require_committee=False, require_admin=False):
    def dependency(session: SessionContext = Depends(get_session)) -> Member:
        redirect = guard(session, require_committee=require_committee, require_admin=require_admin)
        if redirect:
            raise RedirectRequired(redirect)
        return session.user
    return dependency


require_login = _guarded()
require_committee = _guarded(require_committee=True)
require_admin = _guarded(require_admin=True)


def _user_data(member: Member) -> dict:
    data = member.to_dict()
    data.update({"is_committee": member.is_committee, "is_admin": member.is_admin})
    return data


def _export_response(doc: reports.ExportDocument) -> StreamingResponse:
    return StreamingResponse(
        iter([doc.content]),
        media_type=doc.media_type,
        headers={"Content-Disposition": f"attachment; filename={doc.filename}"},
    )


def _future_start(date: str, time: str) -> datetime:
    starts_at = combine_date_time(date, time)
    if starts_at <= datetime.now():
        raise ValidationError({"date": "Date must be in the future"})
    return starts_at


def create_app(db_path: str = DATABASE_PATH, seed: bool = True, portal: Optional[Portal] = None) -> FastAPI:
    """Build the application around one Portal instance."""
    if portal is None:
        portal = Portal(Database(db_path))
        portal.start(seed=seed)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Closing database connection")
        portal.close()

    app = FastAPI(lifespan=lifespan, title="Computing Society Portal")
    app.state.portal = portal

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PortalError)
    async def portal_error_handler(request: Request, exc: PortalError):
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message, "data": exc.data})

    @app.exception_handler(RedirectRequired)
    async def redirect_handler(request: Request, exc: RedirectRequired):
        return RedirectResponse(exc.location, status_code=status.HTTP_303_SEE_OTHER)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = {}
        for err in exc.errors():
            field = next((p for p in reversed(err.get("loc", ())) if isinstance(p, str)), "body")
            errors[field] = err["msg"].removeprefix("Value error, ")
        return JSONResponse(
            status_code=ValidationError.status_code,
            content={"message": "Please correct the highlighted fields", "data": {"errors": errors}},
        )

    # -------------------------------
    # Auth Routes
    # -------------------------------
    @app.get("/", response_model=dict, summary="Login page")
    def login_page(session: SessionContext = Depends(get_session)):
        """Login page data; signed-in users are sent on to their dashboard."""
        if session.is_authenticated:
            return {"message": "Already signed in", "data": {"redirect": DASHBOARD_PATH}}
        return {"message": "Please sign in", "data": {"email_domain": portal.directory.email_domain}}

    @app.post("/login", response_model=dict, summary="Login with university credentials")
    def login(body: LoginRequest):
        """Authenticate and return the bearer token the client sends on later requests."""
        session = portal.open_session()
        member = session.login(body.email, body.password)
        return {"message": f"Welcome, {member.name}", "data": {
            "access_token": session.token,
            "token_type": "bearer",
            "user": _user_data(member),
            "redirect": DASHBOARD_PATH,
        }}

    @app.post("/logout", response_model=dict, summary="Logout and end this client's session")
    def logout(session: SessionContext = Depends(get_session)):
        session.logout()
        return {"message": "Logged out", "data": {"redirect": "/"}}

    # -------------------------------
    # Member Pages
    # -------------------------------
    @app.get("/dashboard", response_model=dict, summary="Member dashboard")
    def dashboard(user: Member = Depends(require_login)):
        registry = portal.registry
        upcoming = [registry.get_event(event_id) for event_id in registry.scheduler.upcoming(limit=3)]
        next_event = registry.scheduler.get_next_event()
        return {"message": "Dashboard retrieved", "data": {
            "user": _user_data(user),
            "upcoming_events": [e.display_details() for e in upcoming],
            "next_event": registry.get_event(next_event[1]).display_details() if next_event else None,
            "recent_posts": [p.to_dict() for p in portal.posts.list_posts()[:3]],
            "my_registrations": len(registry.events_for(user.id)),
        }}

    @app.get("/events", response_model=dict, summary="List all events")
    def list_events(user: Member = Depends(require_login)):
        data = []
        for event in portal.registry.list_events():
            details = event.display_details()
            membership = portal.registry.membership(event.id, user.id)
            details["my_status"] = membership.status if membership else None
            details["my_position"] = membership.position if membership else None
            data.append(details)
        return {"message": "Events retrieved", "data": data}

    @app.post("/events/{event_id}/register", response_model=dict, summary="Register for an event")
    def register_for_event(event_id: int, user: Member = Depends(require_login)):
        membership = portal.registry.register(event_id, user.id)
        event = portal.registry.get_event(event_id)
        if membership.status == "waitlisted":
            message = f"Joined waitlist for {event.title}. Position #{membership.position}"
        else:
            message = f"{user.name} registered for {event.title}"
        return {"message": message, "data": {
            "status": membership.status,
            "position": membership.position,
            "event": event.display_details(),
        }}

    @app.post("/events/{event_id}/cancel", response_model=dict, summary="Cancel a registration or waitlist entry")
    def cancel_registration(event_id: int, user: Member = Depends(require_login)):
        promoted = portal.registry.cancel(event_id, user.id)
        event = portal.registry.get_event(event_id)
        return {"message": f"Registration for {event.title} cancelled", "data": {
            "promoted_user_id": promoted,
            "event": event.display_details(),
        }}

    @app.get("/posts", response_model=dict, summary="Posts feed")
    def list_posts(category: Optional[str] = None, user: Member = Depends(require_login)):
        posts = portal.posts.list_posts(category)
        return {"message": "Posts retrieved", "data": {
            "posts": [p.to_dict() for p in posts],
            "categories": portal.posts.category_counts(),
        }}

    @app.get("/post/{post_id}", response_model=dict, summary="Post with comments")
    def get_post(post_id: int, user: Member = Depends(require_login)):
        post = portal.posts.get_post(post_id)
        comments = [{
            "id": c.id,
            "user_name": c.user_name,
            "content": c.content,
            "created_at": c.created_at.isoformat(),
        } for c in portal.posts.comments(post_id)]
        return {"message": "Post retrieved", "data": {"post": post.to_dict(), "comments": comments}}

    @app.post("/post/{post_id}/like", response_model=dict, summary="Like a post")
    def like_post(post_id: int, user: Member = Depends(require_login)):
        post = portal.posts.like(post_id)
        return {"message": "Post liked", "data": {"like_count": post.like_count}}

    @app.post("/post/{post_id}/comments", response_model=dict, status_code=status.HTTP_201_CREATED, summary="Comment on a post")
    def comment_on_post(post_id: int, body: CommentCreate, user: Member = Depends(require_login)):
        comment = portal.posts.add_comment(post_id, user, body.content)
        return {"message": "Comment added", "data": {"id": comment.id, "content": comment.content}}

    @app.get("/profile", response_model=dict, summary="Member profile")
    def profile(user: Member = Depends(require_login)):
        registrations = [{
            **event.display_details(),
            "my_status": membership.status,
            "my_position": membership.position,
        } for event, membership in portal.registry.events_for(user.id)]
        stats = portal.posts.activity_for(user.id)
        stats.update({"events_attended": user.events_attended, "member_since": user.join_date.strftime("%b %Y")})
        return {"message": "Profile retrieved", "data": {
            "user": _user_data(user),
            "stats": stats,
            "registrations": registrations,
        }}

    # -------------------------------
    # Admin Dashboard
    # -------------------------------
    @app.get("/admin", response_model=dict, summary="Committee dashboard with analytics")
    def admin_dashboard(date_range: str = "month", user: Member = Depends(require_committee)):
        events = portal.registry.list_events()
        members = portal.directory.list_members()
        posts = portal.posts.list_posts()
        return {"message": "Admin dashboard retrieved", "data": {
            "analytics": reports.dashboard_analytics(events, members, posts, date_range),
            "events": [e.display_details() for e in events],
            "posts": [p.to_dict() for p in posts],
            "members": [m.to_dict() for m in members],
        }}

    @app.post("/admin/events", response_model=dict, status_code=status.HTTP_201_CREATED, summary="Create an event")
    def create_event(body: EventCreate, user: Member = Depends(require_committee)):
        event = portal.registry.create_event(
            title=body.title,
            description=body.description,
            starts_at=_future_start(body.date, body.time),
            location=body.location,
            capacity=body.capacity,
            duration_hours=body.duration_hours,
            organizer=user,
        )
        logger.info(f"Event {event.id} created by {user.email}")
        return {"message": f'Event "{event.title}" created successfully!', "data": event.display_details()}

    @app.put("/admin/events/{event_id}", response_model=dict, summary="Update an event")
    def update_event(event_id: int, body: EventUpdate, user: Member = Depends(require_committee)):
        event = portal.registry.get_event(event_id)
        starts_at = None
        if body.date or body.time:
            date = body.date or event.starts_at.strftime("%Y-%m-%d")
            time = body.time or event.starts_at.strftime("%H:%M")
            starts_at = _future_start(date, time)
        event = portal.registry.update_event(
            event_id,
            title=body.title,
            description=body.description,
            starts_at=starts_at,
            duration_hours=body.duration_hours,
            location=body.location,
            capacity=body.capacity,
        )
        return {"message": f"Event {event_id} updated", "data": event.display_details()}

    @app.delete("/admin/events/{event_id}", response_model=dict, summary="Delete an event")
    def delete_event(event_id: int, user: Member = Depends(require_committee)):
        portal.registry.delete_event(event_id)
        return {"message": f"Event {event_id} deleted", "data": {}}

    @app.post("/admin/posts", response_model=dict, status_code=status.HTTP_201_CREATED, summary="Create a post")
    def create_post(body: PostCreate, user: Member = Depends(require_committee)):
        scheduled_for = None
        if body.schedule_for_later:
            if not body.scheduled_date:
                raise ValidationError({"scheduled_date": "Scheduled date is required"})
            scheduled_for = combine_date_time(body.scheduled_date, body.scheduled_time, field="scheduled_date")
        post = portal.posts.create_post(user, body.title, body.content, body.category, scheduled_for)
        if scheduled_for:
            message = f'Post "{post.title}" scheduled for {scheduled_for:%Y-%m-%d %H:%M}'
        else:
            message = f'Post "{post.title}" published successfully!'
        return {"message": message, "data": post.to_dict()}

    @app.put("/admin/posts/{post_id}", response_model=dict, summary="Update a post")
    def update_post(post_id: int, body: PostUpdate, user: Member = Depends(require_committee)):
        scheduled_for = None
        if body.scheduled_date:
            scheduled_for = combine_date_time(body.scheduled_date, body.scheduled_time, field="scheduled_date")
        post = portal.posts.update_post(post_id, body.title, body.content, body.category, scheduled_for)
        return {"message": f"Post {post_id} updated", "data": post.to_dict()}

    @app.delete("/admin/posts/{post_id}", response_model=dict, summary="Delete a post")
    def delete_post(post_id: int, user: Member = Depends(require_committee)):
        portal.posts.delete_post(post_id)
        return {"message": f"Post {post_id} deleted", "data": {}}

    @app.post("/admin/members/{member_id}/promote", response_model=dict, summary="Promote a member to committee")
    def promote_member(member_id: int, user: Member = Depends(require_admin)):
        member = portal.directory.promote_to_committee(member_id)
        return {"message": f"{member.name} is now {member.role}", "data": member.to_dict()}

    @app.get("/admin/export", response_model=None, summary="Export an analytics report")
    def export_report(format: str = "csv", report_type: str = "summary", date_range: str = "month",
                      user: Member = Depends(require_committee)):
        doc = reports.export_report(
            portal.registry.list_events(),
            portal.directory.list_members(),
            portal.posts.list_posts(),
            fmt=format,
            report_type=report_type,
            date_range=date_range,
        )
        logger.info(f"Report {doc.filename} exported by {user.email}")
        return _export_response(doc)

    @app.get("/admin/emails", response_model=dict, summary="Simulated email history")
    def email_history(user: Member = Depends(require_committee)):
        return {"message": "Emails retrieved", "data": [m.to_dict() for m in portal.notifier.history()]}

    # -------------------------------
    # Event Admin Routes
    # -------------------------------
    @app.get("/event/{event_id}/admin", response_model=dict, summary="Attendee management for one event")
    def event_admin(event_id: int, status_filter: str = Query("all", alias="status"), search: Optional[str] = None,
                    user: Member = Depends(require_committee)):
        registry = portal.registry
        event = registry.get_event(event_id)
        everyone = registry.attendees(event_id)
        counts = {s: sum(1 for a in everyone if a.status == s)
                  for s in ("registered", "waitlisted", "attended", "cancelled")}
        attendees = registry.attendees(event_id, status=status_filter, search=search)
        return {"message": "Event retrieved", "data": {
            "event": event.display_details(),
            "counts": counts,
            "attendees": [a.to_dict() for a in attendees],
        }}

    @app.post("/event/{event_id}/admin/promote/{user_id}", response_model=dict, summary="Promote from the waitlist")
    def promote_attendee(event_id: int, user_id: int, override_capacity: bool = False,
                         user: Member = Depends(require_committee)):
        event = portal.registry.promote_from_waitlist(event_id, user_id, override_capacity=override_capacity)
        logger.info(f"User {user_id} promoted on event {event_id} by {user.email}")
        return {"message": f"User {user_id} promoted from waitlist", "data": event.display_details()}

    @app.post("/event/{event_id}/admin/attended/{user_id}", response_model=dict, summary="Mark an attendee as attended")
    def mark_attended(event_id: int, user_id: int, user: Member = Depends(require_committee)):
        portal.registry.mark_attended(event_id, user_id)
        return {"message": f"User {user_id} marked as attended", "data": {}}

    @app.delete("/event/{event_id}/admin/attendees/{user_id}", response_model=dict, summary="Remove an attendee")
    def remove_attendee(event_id: int, user_id: int, user: Member = Depends(require_committee)):
        promoted = portal.registry.cancel(event_id, user_id)
        event = portal.registry.get_event(event_id)
        return {"message": f"User {user_id} removed", "data": {
            "promoted_user_id": promoted,
            "event": event.display_details(),
        }}

    @app.post("/event/{event_id}/admin/remind", response_model=dict, summary="Send reminder emails")
    def send_reminders(event_id: int, body: ReminderRequest, user: Member = Depends(require_committee)):
        sent = portal.registry.send_reminders(event_id, body.user_ids)
        return {"message": f"Reminder email sent to {sent} attendee(s)", "data": {"sent": sent}}

    @app.get("/event/{event_id}/admin/export", response_model=None, summary="Export attendees")
    def export_attendees(event_id: int, format: str = "csv", ids: Optional[List[int]] = Query(None),
                         user: Member = Depends(require_committee)):
        event = portal.registry.get_event(event_id)
        doc = reports.export_attendees(event, portal.registry.attendees(event_id), fmt=format, selected_ids=ids)
        logger.info(f"Attendees exported for event {event_id} by {user.email}")
        return _export_response(doc)

    return app


app = create_app()
