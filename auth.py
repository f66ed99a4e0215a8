from datetime import datetime, timedelta, UTC
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from jose import JWTError, jwt
from passlib.hash import bcrypt

from errors import AuthFailed, NotFound, ValidationError
from models import Member

load_dotenv()

# JWT configuration
SECRET_KEY = os.getenv("SECRET_KEY", "default-secret")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
SESSION_EXPIRE_DAYS = int(os.getenv("SESSION_EXPIRE_DAYS", "7"))

EMAIL_DOMAIN = os.getenv("PORTAL_EMAIL_DOMAIN", "solent.ac.uk")

logger = logging.getLogger(__name__)


def create_session_token(member: Member, expires_delta: Optional[timedelta] = None,
                         session_id: Optional[str] = None) -> str:
    """Sign the logged-in member's record; this is the bearer token handed to the client."""
    to_encode = {
        "sub": member.email,
        "uid": member.id,
        "name": member.name,
        "role": member.role,
    }
    if session_id:
        to_encode["sid"] = session_id
    expire = datetime.now(UTC) + (expires_delta or timedelta(days=SESSION_EXPIRE_DAYS))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_session_token(token: str) -> Optional[dict]:
    """Return the token payload, or None if it is invalid or expired."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"Rejected session token: {e}")
        return None
    if payload.get("sub") is None or payload.get("uid") is None:
        return None
    return payload


class Directory:
    """Member records with explicit roles; the authentication collaborator."""

    def __init__(self, email_domain: str = EMAIL_DOMAIN):
        self.email_domain = email_domain.lower()
        self._members: dict[int, Member] = {}
        self._password_hashes: dict[int, str] = {}

    def add_member(self, member: Member, password: Optional[str] = None, password_hash: Optional[str] = None) -> Member:
        """Add a member. Pass either a plain password or a precomputed bcrypt hash."""
        member.email = member.email.lower()
        if self.get_by_email(member.email) is not None:
            raise ValidationError({"email": "A member with this email already exists"})
        self._members[member.id] = member
        if password is not None:
            password_hash = bcrypt.hash(password)
        if password_hash is not None:
            self._password_hashes[member.id] = password_hash
        return member

    def get(self, member_id: int) -> Optional[Member]:
        return self._members.get(member_id)

    def get_by_email(self, email: str) -> Optional[Member]:
        email = email.lower()
        for member in self._members.values():
            if member.email == email:
                return member
        return None

    def list_members(self) -> list[Member]:
        return list(self._members.values())

    def email_for(self, member_id: int) -> Optional[str]:
        member = self._members.get(member_id)
        return member.email if member else None

    def authenticate(self, email: str, password: str) -> Member:
        """Check the university domain and the password; return the member."""
        email = email.strip().lower()
        if not email.endswith("@" + self.email_domain):
            raise AuthFailed(f"Please use your university email (@{self.email_domain})")
        member = self.get_by_email(email)
        password_hash = self._password_hashes.get(member.id) if member else None
        if not member or not password_hash or not bcrypt.verify(password, password_hash):
            raise AuthFailed("Invalid credentials. Please try again.")
        return member

    def promote_to_committee(self, member_id: int) -> Member:
        member = self._members.get(member_id)
        if member is None:
            raise NotFound(f"Member {member_id} not found")
        if member.role == "member":
            member.role = "committee"
            logger.info(f"Member {member_id} promoted to committee")
        return member

    def touch(self, member_id: int, now: Optional[datetime] = None):
        member = self._members.get(member_id)
        if member:
            member.last_active = now or datetime.now()
