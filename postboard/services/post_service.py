"""
Post service: list and create for the Post aggregate.

The list is served stale-while-revalidate: with ``POSTS_LIST_TTL`` at 0
every cached read is already stale, so it is returned immediately and a
single background refresh replaces it.  Comment writes evict the list via
the ``posts_list`` tag.
"""
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload, selectinload

from postboard.cache import CachePolicy, cache
from postboard.config import settings
from postboard.database import Database
from postboard.errors import InternalError, NotFoundError, ValidationError
from postboard.models import Comment, Post, User
from postboard.schemas import PostCreate
from postboard.services.records import (
    comment_to_dict,
    count_comments_on_post,
    post_to_dict,
    user_to_dict,
)

logger = logging.getLogger(__name__)

POSTS_LIST_TAG = "posts_list"


def _post_with_relations(post: Post, comment_count: int) -> dict:
    data = post_to_dict(post)
    data["author"] = user_to_dict(post.author)
    data["comments"] = []
    for comment in post.comments:
        entry = comment_to_dict(comment)
        entry["author"] = user_to_dict(comment.author)
        data["comments"].append(entry)
    data["comment_count"] = comment_count
    return data


async def _load_posts(store: Database, limit: int) -> list[dict]:
    q = (
        select(Post, count_comments_on_post().label("comment_count"))
        .options(
            joinedload(Post.author),
            selectinload(Post.comments).joinedload(Comment.author),
        )
        .order_by(Post.created_at.desc())
        .limit(limit)
    )
    async with store.session() as session:
        rows = (await session.execute(q)).all()
    return [_post_with_relations(post, comment_count) for post, comment_count in rows]


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def list_posts(store: Database, limit: int | None = None) -> list[dict]:
    """
    Return up to *limit* posts newest-first, each with its author, its
    comments (newest-first, with their authors) and a comment count.

    *limit* defaults to ``DEFAULT_POST_LIMIT`` and is clamped to
    ``MAX_POST_LIMIT``; values below 1 raise ValidationError.
    """
    if limit is None:
        limit = settings.DEFAULT_POST_LIMIT
    if limit < 1:
        raise ValidationError("Limit must be at least 1")
    limit = min(limit, settings.MAX_POST_LIMIT)

    policy = CachePolicy(
        ttl=settings.POSTS_LIST_TTL,
        swr=settings.POSTS_LIST_SWR,
        tags=(POSTS_LIST_TAG,),
    )
    try:
        return await cache.fetch(f"posts:list:{limit}", policy, lambda: _load_posts(store, limit))
    except (SQLAlchemyError, OSError) as exc:
        logger.exception("Error fetching posts: limit=%d", limit)
        raise InternalError("Failed to fetch posts") from exc


async def create_post(store: Database, data: PostCreate) -> dict:
    """
    Create a post for an existing author and return it with its author.

    The author lookup and the insert run in one session but are not
    locked together: an author removed in between is not detected here.
    """
    if not data.title or not data.author_id:
        raise ValidationError("Title and author are required")

    try:
        async with store.session() as session:
            author = await session.get(User, data.author_id)
            if author is None:
                logger.info("Author not found on post creation: id=%s", data.author_id)
                raise NotFoundError("Author not found")

            post = Post(
                title=data.title,
                content=data.content,
                published=data.published,
                author_id=author.id,
            )
            session.add(post)
            await session.flush()
            result = post_to_dict(post)
            result["author"] = user_to_dict(author)
    except (SQLAlchemyError, OSError) as exc:
        logger.exception("Error creating post: author_id=%s", data.author_id)
        raise InternalError("Failed to create post") from exc

    await cache.revalidate_path(settings.HOME_PATH)
    return result
