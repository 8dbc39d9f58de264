"""
Read/write cache coherence through the services.

Reads are cached under their freshness policy; writes signal home-page
regeneration, and comment writes additionally evict ``posts_list`` and the
author's ``user_<id>`` tag.  Rows inserted directly through a session
bypass those signals and show what a read would serve without them.
"""
import pytest

from postboard.cache import cache
from postboard.database import Database
from postboard.errors import ConflictError, NotFoundError
from postboard.models import Post, User
from postboard.schemas import CommentCreate, PostCreate, UserCreate
from postboard.services import comment_service, post_service, user_service


async def _insert_user_directly(store: Database, email: str) -> None:
    async with store.session() as session:
        session.add(User(email=email))


@pytest.mark.asyncio
async def test_list_users_fresh_for_sixty_seconds(store: Database, fake_redis, clock):
    await user_service.create_user(store, UserCreate(email="a@x.com"))
    assert len(await user_service.list_users(store)) == 1

    await _insert_user_directly(store, "b@x.com")
    clock.advance(59)
    assert len(await user_service.list_users(store)) == 1

    clock.advance(1)
    assert len(await user_service.list_users(store)) == 2


@pytest.mark.asyncio
async def test_list_posts_served_stale_while_revalidating(store: Database, fake_redis, clock):
    user = await user_service.create_user(store, UserCreate(email="a@x.com"))
    await post_service.create_post(store, PostCreate(title="First", author_id=user["id"]))
    assert [p["title"] for p in await post_service.list_posts(store)] == ["First"]

    # create_post does not evict posts_list
    await post_service.create_post(store, PostCreate(title="Second", author_id=user["id"]))
    clock.advance(10)
    assert [p["title"] for p in await post_service.list_posts(store)] == ["First"]

    await cache.wait_for_refreshes()
    assert [p["title"] for p in await post_service.list_posts(store)] == ["Second", "First"]


@pytest.mark.asyncio
async def test_list_posts_cached_per_limit(store: Database, fake_redis):
    user = await user_service.create_user(store, UserCreate(email="a@x.com"))
    await post_service.create_post(store, PostCreate(title="P", author_id=user["id"]))
    await post_service.list_posts(store, 3)
    await post_service.list_posts(store, 5)
    assert {"posts:list:3", "posts:list:5"} <= fake_redis.sets["tag:posts_list"]


@pytest.mark.asyncio
async def test_get_user_fresh_then_stale_then_refreshed(store: Database, fake_redis, clock):
    user = await user_service.create_user(store, UserCreate(email="a@x.com"))
    assert (await user_service.get_user(store, user["id"]))["post_count"] == 0

    async with store.session() as session:
        session.add(Post(title="Direct", author_id=user["id"]))

    clock.advance(29)
    assert (await user_service.get_user(store, user["id"]))["post_count"] == 0

    # Stale: old value served, refresh runs in the background.
    clock.advance(2)
    assert (await user_service.get_user(store, user["id"]))["post_count"] == 0
    await cache.wait_for_refreshes()
    assert (await user_service.get_user(store, user["id"]))["post_count"] == 1


@pytest.mark.asyncio
async def test_get_user_miss_is_not_cached(store: Database, fake_redis):
    with pytest.raises(NotFoundError):
        await user_service.get_user(store, "nobody")
    assert "users:detail:nobody" not in fake_redis.values


@pytest.mark.asyncio
async def test_create_comment_evicts_posts_list_and_author_detail(store: Database, fake_redis):
    author = await user_service.create_user(store, UserCreate(email="author@x.com"))
    reader = await user_service.create_user(store, UserCreate(email="reader@x.com"))
    post = await post_service.create_post(store, PostCreate(title="T", author_id=author["id"]))

    await post_service.list_posts(store)
    await user_service.get_user(store, reader["id"])
    await user_service.get_user(store, author["id"])
    await user_service.list_users(store)

    await comment_service.create_comment(
        store, CommentCreate(content="hi", post_id=post["id"], author_id=reader["id"])
    )

    assert "posts:list:5" not in fake_redis.values
    assert f"users:detail:{reader['id']}" not in fake_redis.values
    # Only the comment author's tag is invalidated.
    assert f"users:detail:{author['id']}" in fake_redis.values
    assert "users:list" in fake_redis.values

    [listed] = await post_service.list_posts(store)
    assert listed["comment_count"] == 1
    detail = await user_service.get_user(store, reader["id"])
    assert [c["content"] for c in detail["comments"]] == ["hi"]


@pytest.mark.asyncio
async def test_writes_signal_home_page_regeneration(store: Database, fake_redis):
    user = await user_service.create_user(store, UserCreate(email="a@x.com"))
    assert await cache.consume_revalidation("/") is True

    post = await post_service.create_post(store, PostCreate(title="T", author_id=user["id"]))
    assert await cache.consume_revalidation("/") is True

    await comment_service.create_comment(
        store, CommentCreate(content="hi", post_id=post["id"], author_id=user["id"])
    )
    assert await cache.consume_revalidation("/") is True
    assert await cache.consume_revalidation("/") is False


@pytest.mark.asyncio
async def test_failed_writes_do_not_signal(store: Database, fake_redis):
    await user_service.create_user(store, UserCreate(email="a@x.com"))
    await cache.consume_revalidation("/")

    with pytest.raises(ConflictError):
        await user_service.create_user(store, UserCreate(email="a@x.com"))
    with pytest.raises(NotFoundError):
        await post_service.create_post(store, PostCreate(title="T", author_id="nobody"))
    assert await cache.consume_revalidation("/") is False
