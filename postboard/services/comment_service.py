"""
Comment service: append-only comment creation.

Comments cannot be edited or deleted.  Besides the home-page regeneration
signal every write issues, a new comment explicitly evicts the cached post
list and the author's cached detail view instead of waiting for them to
expire.
"""
import logging

from sqlalchemy.exc import SQLAlchemyError

from postboard.cache import cache
from postboard.config import settings
from postboard.database import Database
from postboard.errors import InternalError, NotFoundError, ValidationError
from postboard.models import Comment, Post, User
from postboard.schemas import CommentCreate
from postboard.services.post_service import POSTS_LIST_TAG
from postboard.services.records import comment_to_dict, post_to_dict, user_to_dict
from postboard.services.user_service import user_tag

logger = logging.getLogger(__name__)


async def create_comment(store: Database, data: CommentCreate) -> dict:
    """
    Create a comment on an existing post by an existing author.

    Both rows are looked up before the insert; a missing post is reported
    before a missing author.  Returns the comment with its author and a
    summary of the post.
    """
    if not data.content or not data.post_id or not data.author_id:
        raise ValidationError("Content, post, and author are required")

    try:
        async with store.session() as session:
            post = await session.get(Post, data.post_id)
            author = await session.get(User, data.author_id)
            if post is None:
                logger.info("Post not found on comment creation: id=%s", data.post_id)
                raise NotFoundError("Post not found")
            if author is None:
                logger.info("Author not found on comment creation: id=%s", data.author_id)
                raise NotFoundError("Author not found")

            comment = Comment(
                content=data.content,
                post_id=post.id,
                author_id=author.id,
            )
            session.add(comment)
            await session.flush()
            result = comment_to_dict(comment)
            result["author"] = user_to_dict(author)
            result["post"] = post_to_dict(post)
    except (SQLAlchemyError, OSError) as exc:
        logger.exception(
            "Error creating comment: post_id=%s author_id=%s", data.post_id, data.author_id
        )
        raise InternalError("Failed to create comment") from exc

    await cache.revalidate_path(settings.HOME_PATH)
    await cache.invalidate_tags([POSTS_LIST_TAG, user_tag(data.author_id)])
    return result
