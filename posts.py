import logging
from datetime import datetime
from typing import Optional

from errors import NotFound, ValidationError
from models import POST_CATEGORIES, Comment, Member, Post

MIN_CONTENT_LENGTH = 20

logger = logging.getLogger(__name__)


class PostBoard:
    def __init__(self):
        """In-memory posts feed with likes and comments."""
        self._posts: dict[int, Post] = {}
        self._comments: dict[int, list[Comment]] = {}
        self._next_post_id = 1
        self._next_comment_id = 1

    def add_post(self, post: Post) -> Post:
        """Add a fully built post, e.g. seed data."""
        self._posts[post.id] = post
        self._comments.setdefault(post.id, [])
        self._next_post_id = max(self._next_post_id, post.id + 1)
        return post

    def create_post(self, author: Member, title: str, content: str, category: str = "announcement",
                    scheduled_for: Optional[datetime] = None) -> Post:
        _validate_post_fields(title=title, content=content, category=category)
        post = Post(
            id=self._next_post_id,
            title=title.strip(),
            content=content.strip(),
            author_id=author.id,
            author_name=author.name,
            category=category,
            scheduled_for=scheduled_for,
        )
        self.add_post(post)
        if scheduled_for:
            logger.info(f"Post {post.id} scheduled for {scheduled_for.isoformat()} by {author.email}")
        else:
            logger.info(f"Post {post.id} published by {author.email}")
        return post

    def get_post(self, post_id: int) -> Post:
        post = self._posts.get(post_id)
        if post is None:
            raise NotFound(f"Post {post_id} not found")
        return post

    def list_posts(self, category: Optional[str] = None) -> list[Post]:
        """Newest first, optionally limited to one category."""
        if category is not None and category != "all" and category not in POST_CATEGORIES:
            raise ValidationError({"category": f"Unknown category '{category}'"})
        posts = sorted(self._posts.values(), key=lambda p: (p.created_at, p.id), reverse=True)
        if category and category != "all":
            posts = [p for p in posts if p.category == category]
        return posts

    def category_counts(self) -> dict:
        counts = {"all": len(self._posts)}
        for category in POST_CATEGORIES:
            counts[category] = sum(1 for p in self._posts.values() if p.category == category)
        return counts

    def update_post(self, post_id: int, title=None, content=None, category=None, scheduled_for=None) -> Post:
        post = self.get_post(post_id)
        _validate_post_fields(title=title, content=content, category=category)
        if title is not None:
            post.title = title.strip()
        if content is not None:
            post.content = content.strip()
        if category is not None:
            post.category = category
        if scheduled_for is not None:
            post.scheduled_for = scheduled_for
        logger.info(f"Post {post_id} updated")
        return post

    def delete_post(self, post_id: int):
        self.get_post(post_id)
        del self._posts[post_id]
        self._comments.pop(post_id, None)
        logger.info(f"Post {post_id} deleted")

    def like(self, post_id: int) -> Post:
        post = self.get_post(post_id)
        post.like_count += 1
        return post

    def add_comment(self, post_id: int, user: Member, content: str) -> Comment:
        post = self.get_post(post_id)
        if not content or not content.strip():
            raise ValidationError({"content": "Comment cannot be empty"})
        comment = Comment(
            id=self._next_comment_id,
            post_id=post_id,
            user_id=user.id,
            user_name=user.name,
            content=content.strip(),
        )
        self._next_comment_id += 1
        self._comments[post_id].append(comment)
        post.comment_count += 1
        return comment

    def comments(self, post_id: int) -> list[Comment]:
        self.get_post(post_id)
        return list(self._comments.get(post_id, []))

    def activity_for(self, user_id: int) -> dict:
        """Posts written and comments made by one member."""
        return {
            "posts_created": sum(1 for p in self._posts.values() if p.author_id == user_id),
            "comments_made": sum(1 for cs in self._comments.values() for c in cs if c.user_id == user_id),
        }


def _validate_post_fields(title=None, content=None, category=None):
    errors = {}
    if title is not None and not title.strip():
        errors["title"] = "Post title is required"
    if content is not None:
        if not content.strip():
            errors["content"] = "Content is required"
        elif len(content.strip()) < MIN_CONTENT_LENGTH:
            errors["content"] = f"Content should be at least {MIN_CONTENT_LENGTH} characters"
    if category is not None and category not in POST_CATEGORIES:
        errors["category"] = f"Unknown category '{category}'"
    if errors:
        raise ValidationError(errors)
