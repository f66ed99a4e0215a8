import logging
from typing import Optional

from auth import EMAIL_DOMAIN, Directory
from database import Database
from notifier import EmailNotifier
from posts import PostBoard
from registry import EventRegistry
from seed import seed_portal
from session import SessionContext

logger = logging.getLogger(__name__)


class Portal:
    """The application shell: owns every component; sessions are opened per client."""

    def __init__(self, db: Database, notifier: Optional[EmailNotifier] = None, email_domain: str = EMAIL_DOMAIN):
        self.db = db
        self.directory = Directory(email_domain)
        self.notifier = notifier or EmailNotifier()
        self.registry = EventRegistry(self.notifier, self.directory)
        self.posts = PostBoard()

    def start(self, seed: bool = True, password: Optional[str] = None):
        """Load demo data."""
        if seed:
            if password is None:
                seed_portal(self)
            else:
                seed_portal(self, password=password)
            logger.info(
                f"Seeded {len(self.directory.list_members())} members, "
                f"{len(self.registry.list_events())} events, {len(self.posts.list_posts())} posts"
            )

    def open_session(self, token: Optional[str] = None) -> SessionContext:
        """Session for one client, restored from its bearer token when it has one."""
        return SessionContext(self.db, self.directory).load(token)

    def close(self):
        self.db.close()
