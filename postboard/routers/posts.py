from fastapi import APIRouter, Depends, Query

from postboard.config import settings
from postboard.database import Database
from postboard.dependencies import get_store
from postboard.schemas import PostCreate
from postboard.services import post_service

router = APIRouter(prefix="/api/v1/posts", tags=["posts"])

@router.get("")
async def list_posts(
    limit: int = Query(settings.DEFAULT_POST_LIMIT, ge=1),
    store: Database = Depends(get_store),
):
    return await post_service.list_posts(store, limit)

@router.post("", status_code=201)
async def create_post(data: PostCreate, store: Database = Depends(get_store)):
    return await post_service.create_post(store, data)
