"""
User service: list, detail and create for the User aggregate.

Design notes
------------
- Both reads go through ``cache.fetch`` with an explicit ``CachePolicy``;
  the loaders open their own session from the store handle so a stale
  entry can be refreshed in the background after the request returns.
- Post and comment counts are correlated scalar subqueries selected
  alongside each user row, so the list costs two statements (users +
  ``selectinload`` of posts) regardless of its length.
- ``create_user`` relies on the store's unique constraint for email and
  translates the violation into ``ConflictError``.
"""
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload

from postboard.cache import CachePolicy, cache
from postboard.config import settings
from postboard.database import Database
from postboard.errors import ConflictError, InternalError, NotFoundError, ValidationError
from postboard.models import Comment, User
from postboard.schemas import UserCreate
from postboard.services.records import (
    comment_to_dict,
    count_comments_by_author,
    count_posts_by_author,
    is_unique_violation,
    post_to_dict,
    user_to_dict,
)

logger = logging.getLogger(__name__)

USERS_LIST_TAG = "users_list"


def user_tag(user_id: str) -> str:
    return f"user_{user_id}"


# ---------------------------------------------------------------------------
# Loaders
# ---------------------------------------------------------------------------

async def _load_users(store: Database) -> list[dict]:
    q = (
        select(
            User,
            count_posts_by_author().label("post_count"),
            count_comments_by_author().label("comment_count"),
        )
        .options(selectinload(User.posts))
        .order_by(User.created_at.desc())
    )
    async with store.session() as session:
        rows = (await session.execute(q)).all()

    users = []
    for user, post_count, comment_count in rows:
        data = user_to_dict(user)
        data["posts"] = [post_to_dict(p) for p in user.posts]
        data["post_count"] = post_count
        data["comment_count"] = comment_count
        users.append(data)
    return users


async def _load_user(store: Database, user_id: str) -> dict | None:
    q = (
        select(
            User,
            count_posts_by_author().label("post_count"),
            count_comments_by_author().label("comment_count"),
        )
        .where(User.id == user_id)
        .options(selectinload(User.posts))
    )
    comments_q = (
        select(Comment)
        .where(Comment.author_id == user_id)
        .order_by(Comment.created_at.desc())
        .limit(settings.USER_RECENT_COMMENTS)
    )
    async with store.session() as session:
        row = (await session.execute(q)).one_or_none()
        if row is None:
            return None
        comments = (await session.execute(comments_q)).scalars().all()

    user, post_count, comment_count = row
    data = user_to_dict(user)
    data["posts"] = [post_to_dict(p) for p in user.posts]
    data["comments"] = [comment_to_dict(c) for c in comments]
    data["post_count"] = post_count
    data["comment_count"] = comment_count
    return data


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def list_users(store: Database) -> list[dict]:
    """
    Return all users newest-first, each with its posts and post/comment
    counts.  Fresh for ``USERS_LIST_TTL`` seconds, tagged ``users_list``.
    """
    policy = CachePolicy(
        ttl=settings.USERS_LIST_TTL,
        swr=settings.USERS_LIST_SWR,
        tags=(USERS_LIST_TAG,),
    )
    try:
        return await cache.fetch("users:list", policy, lambda: _load_users(store))
    except (SQLAlchemyError, OSError) as exc:
        logger.exception("Error fetching users")
        raise InternalError("Failed to fetch users") from exc


async def get_user(store: Database, user_id: str) -> dict:
    """
    Return one user with posts (newest-first), the most recent comments
    (newest-first, capped at ``USER_RECENT_COMMENTS``) and both counts.

    Raises NotFoundError when no user has *user_id*; misses are not cached.
    """
    policy = CachePolicy(
        ttl=settings.USER_DETAIL_TTL,
        swr=settings.USER_DETAIL_SWR,
        tags=(user_tag(user_id),),
    )
    try:
        user = await cache.fetch(
            f"users:detail:{user_id}", policy, lambda: _load_user(store, user_id)
        )
    except (SQLAlchemyError, OSError) as exc:
        logger.exception("Error fetching user with id=%s", user_id)
        raise InternalError("Failed to fetch user") from exc

    if user is None:
        logger.info("User not found: id=%s", user_id)
        raise NotFoundError("User not found")
    return user


async def create_user(store: Database, data: UserCreate) -> dict:
    """
    Create a user and signal regeneration of the home page.

    Raises ValidationError for a missing email and ConflictError when the
    email is already taken.
    """
    if not data.email:
        raise ValidationError("Email is required")

    try:
        async with store.session() as session:
            user = User(email=data.email, name=data.name)
            session.add(user)
            await session.flush()
            result = user_to_dict(user)
    except IntegrityError as exc:
        if is_unique_violation(exc):
            logger.info("Duplicate email on user creation: %s", data.email)
            raise ConflictError("A user with this email already exists") from exc
        logger.exception("Error creating user: email=%s", data.email)
        raise InternalError("Failed to create user") from exc
    except (SQLAlchemyError, OSError) as exc:
        logger.exception("Error creating user: email=%s", data.email)
        raise InternalError("Failed to create user") from exc

    await cache.revalidate_path(settings.HOME_PATH)
    return result
