from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from chatsync.schemas.user import UserPublic
from chatsync.services.storage import BlobStorage
from chatsync.services.user_service import UserService
from chatsync.utils.dependencies import get_current_user, get_storage, get_user_service


router = APIRouter(tags=["users"])


@router.get("/users")
async def list_users(current_user: str = Depends(get_current_user), service: UserService = Depends(get_user_service)):
    users = await service.list_users(exclude_uid=current_user)
    return {"users": [UserPublic.from_user(u) for u in users]}


@router.get("/users/{uid}", response_model=UserPublic)
async def get_user(uid: str, current_user: str = Depends(get_current_user), service: UserService = Depends(get_user_service)):
    user = await service.get_user(uid)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UserPublic.from_user(user)


@router.get("/avatars/{path}")
async def get_avatar(path: str, storage: BlobStorage = Depends(get_storage)):
    blob = await storage.get(path)
    if blob is None:
        raise HTTPException(status_code=404, detail="Avatar not found")
    data, content_type = blob
    return Response(content=data, media_type=content_type)
