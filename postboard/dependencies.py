from fastapi import Request

from postboard.database import Database


def get_store(request: Request) -> Database:
    """
    FastAPI dependency returning the store handle opened in the lifespan.

    Tests replace it through ``app.dependency_overrides[get_store]``.
    """
    return request.app.state.store
