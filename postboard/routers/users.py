from fastapi import APIRouter, Depends

from postboard.database import Database
from postboard.dependencies import get_store
from postboard.schemas import UserCreate
from postboard.services import user_service

router = APIRouter(prefix="/api/v1/users", tags=["users"])

@router.get("")
async def list_users(store: Database = Depends(get_store)):
    return await user_service.list_users(store)

@router.get("/{user_id}")
async def get_user(user_id: str, store: Database = Depends(get_store)):
    return await user_service.get_user(store, user_id)

@router.post("", status_code=201)
async def create_user(data: UserCreate, store: Database = Depends(get_store)):
    return await user_service.create_user(store, data)
