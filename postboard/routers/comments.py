from fastapi import APIRouter, Depends

from postboard.database import Database
from postboard.dependencies import get_store
from postboard.schemas import CommentCreate
from postboard.services import comment_service

router = APIRouter(prefix="/api/v1/comments", tags=["comments"])

@router.post("", status_code=201)
async def create_comment(data: CommentCreate, store: Database = Depends(get_store)):
    return await comment_service.create_comment(store, data)
