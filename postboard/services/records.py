"""
Serialisation of ORM rows into the plain dicts returned by the services.

Records are JSON-safe (timestamps as ISO strings) because the same dicts
are stored in, and later served from, the Redis cache.
"""
from datetime import timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from postboard.models import Comment, Post, User


def _iso(value) -> str | None:
    if value is None:
        return None
    # SQLite hands back naive datetimes; every stored timestamp is UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "created_at": _iso(user.created_at),
    }


def post_to_dict(post: Post) -> dict:
    """Post without relations (embedded in user records)."""
    return {
        "id": post.id,
        "title": post.title,
        "content": post.content,
        "published": post.published,
        "author_id": post.author_id,
        "created_at": _iso(post.created_at),
    }


def comment_to_dict(comment: Comment) -> dict:
    return {
        "id": comment.id,
        "content": comment.content,
        "post_id": comment.post_id,
        "author_id": comment.author_id,
        "created_at": _iso(comment.created_at),
    }


# ---------------------------------------------------------------------------
# Aggregate counts as correlated scalar subqueries
# ---------------------------------------------------------------------------

def count_posts_by_author():
    return (
        select(func.count(Post.id))
        .where(Post.author_id == User.id)
        .correlate(User)
        .scalar_subquery()
    )


def count_comments_by_author():
    return (
        select(func.count(Comment.id))
        .where(Comment.author_id == User.id)
        .correlate(User)
        .scalar_subquery()
    )


def count_comments_on_post():
    return (
        select(func.count(Comment.id))
        .where(Comment.post_id == Post.id)
        .correlate(Post)
        .scalar_subquery()
    )


def is_unique_violation(exc: IntegrityError) -> bool:
    """
    True when *exc* reports a unique-constraint violation.

    PostgreSQL drivers expose SQLSTATE 23505; SQLite only reports it in the
    message text.
    """
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == "23505":
        return True
    message = str(orig).lower()
    return "unique constraint" in message or "duplicate key" in message
