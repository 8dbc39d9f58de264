"""Database seeder: populates demo users, posts and comments through the services."""
import argparse
import asyncio
import random
import time

from postboard.config import settings
from postboard.database import Database
from postboard.schemas import CommentCreate, PostCreate, UserCreate
from postboard.services import comment_service, post_service, user_service

TOPICS = ["python", "fastapi", "postgresql", "redis", "caching", "sqlalchemy",
          "testing", "performance", "asyncio", "deployment"]


async def seed(
    store: Database,
    num_users: int = 10,
    posts_per_user: int = 3,
    comments_per_post: int = 2,
) -> dict:
    """
    Create *num_users* users, *posts_per_user* posts each and up to
    *comments_per_post* comments per post by random users.

    Returns the number of rows created per entity.
    """
    users = []
    for i in range(num_users):
        users.append(await user_service.create_user(
            store, UserCreate(email=f"user_{i:04d}@example.com", name=f"User {i}")
        ))

    posts = []
    for user in users:
        for _ in range(posts_per_user):
            topic = random.choice(TOPICS)
            posts.append(await post_service.create_post(store, PostCreate(
                title=f"Notes on {topic}",
                content=f"What I learned about {topic} this week. " * 5,
                author_id=user["id"],
                published=random.random() > 0.2,
            )))

    total_comments = 0
    for post in posts:
        for _ in range(random.randint(1, comments_per_post) if comments_per_post else 0):
            await comment_service.create_comment(store, CommentCreate(
                content="Thanks, this was helpful.",
                post_id=post["id"],
                author_id=random.choice(users)["id"],
            ))
            total_comments += 1

    return {"users": len(users), "posts": len(posts), "comments": total_comments}


async def _run(small: bool) -> None:
    store = Database(settings.DATABASE_URL)
    start = time.perf_counter()
    try:
        await store.drop_all()
        await store.create_all()
        if small:
            counts = await seed(store, num_users=5, posts_per_user=2, comments_per_post=2)
        else:
            counts = await seed(store, num_users=50, posts_per_user=20, comments_per_post=5)
    finally:
        await store.dispose()

    elapsed = time.perf_counter() - start
    print(f"Seeding complete in {elapsed:.1f}s")
    for entity, count in counts.items():
        print(f"  {entity.capitalize()}: {count}")


def main():
    parser = argparse.ArgumentParser(description="Seed the postboard database")
    parser.add_argument("--small", action="store_true", help="Use small dataset (5 users)")
    args = parser.parse_args()
    asyncio.run(_run(small=args.small))


if __name__ == "__main__":
    main()
