"""
Session and role context.

Each client holds its own session as a signed bearer token. The server keeps
one record per open session in the key-value store under
`portal_session:<session id>`: written on login, removed on logout, and
required when a token is loaded, so a logged-out token stops working even
though its signature is still valid. Route guarding is a pure function of the
session so it can run before any page data is fetched.
"""
from datetime import datetime
import logging
from typing import Literal, Optional
import uuid

from auth import Directory, create_session_token, decode_session_token
from database import Database
from errors import AuthFailed, ValidationError
from models import Member

SESSION_KEY = "portal_session"

SessionState = Literal["unauthenticated", "authenticating", "authenticated"]

LOGIN_PATH = "/"
DASHBOARD_PATH = "/dashboard"
ADMIN_PATH = "/admin"

logger = logging.getLogger(__name__)


def session_key(session_id: str) -> str:
    return f"{SESSION_KEY}:{session_id}"


class SessionContext:
    def __init__(self, db: Database, directory: Directory):
        self.db = db
        self.directory = directory
        self.state: SessionState = "unauthenticated"
        self.user: Optional[Member] = None
        self.session_id: Optional[str] = None
        self.token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.state == "authenticated" and self.user is not None

    @property
    def is_committee(self) -> bool:
        return self.is_authenticated and self.user.is_committee

    @property
    def is_admin(self) -> bool:
        return self.is_authenticated and self.user.is_admin

    def load(self, token: Optional[str]) -> "SessionContext":
        """Restore the session a client's token refers to, if it is still open."""
        if not token:
            return self
        payload = decode_session_token(token)
        if payload is None or not payload.get("sid"):
            return self
        key = session_key(payload["sid"])
        record = self.db.get_item(key)
        if record is None:
            return self
        member = self.directory.get(payload["uid"])
        if member is None or member.email != payload["sub"] or record.get("uid") != member.id:
            self.db.remove_item(key)
            logger.info(f"Discarded session {payload['sid']} for {payload['sub']}")
            return self
        self.user = member
        self.state = "authenticated"
        self.session_id = payload["sid"]
        self.token = token
        return self

    def save(self):
        if self.is_authenticated:
            if self.session_id is None:
                self.session_id = uuid.uuid4().hex
                self.token = create_session_token(self.user, session_id=self.session_id)
            self.db.set_item(session_key(self.session_id), {
                "uid": self.user.id,
                "email": self.user.email,
                "created_at": datetime.now().isoformat(),
            })
        else:
            if self.session_id is not None:
                self.db.remove_item(session_key(self.session_id))
            self.session_id = None
            self.token = None

    def login(self, email: str, password: str) -> Member:
        """Authenticate and persist the session. Raises AuthFailed or ValidationError."""
        errors = {}
        if not email or not email.strip():
            errors["email"] = "Please enter your email"
        if not password:
            errors["password"] = "Please enter your password"
        if errors:
            raise ValidationError(errors)

        self.state = "authenticating"
        self.user = None
        self.save()
        try:
            member = self.directory.authenticate(email, password)
        except AuthFailed:
            self.state = "unauthenticated"
            logger.info(f"Login failed for {email}")
            raise
        self.directory.touch(member.id)
        self.user = member
        self.state = "authenticated"
        self.save()
        logger.info(f"User {member.email} logged in as {member.role}")
        return member

    def logout(self):
        if self.user is not None:
            logger.info(f"User {self.user.email} logged out")
        self.user = None
        self.state = "unauthenticated"
        self.save()


def guard(session: SessionContext, require_committee: bool = False, require_admin: bool = False) -> Optional[str]:
    """Return the path to redirect to, or None if the page may render."""
    if not session.is_authenticated:
        return LOGIN_PATH
    if require_admin and not session.is_admin:
        return ADMIN_PATH if session.is_committee else DASHBOARD_PATH
    if require_committee and not session.is_committee:
        return DASHBOARD_PATH
    return None
