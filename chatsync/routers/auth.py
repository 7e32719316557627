from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from chatsync.errors import NotAuthenticated
from chatsync.schemas.user import LoginRequest, Token, TokenPayload, UserPublic
from chatsync.schemas.views import SessionView
from chatsync.services.session import Session
from chatsync.services.user_service import UserService
from chatsync.utils.dependencies import get_current_user, get_token, get_user_service
from chatsync.utils.security import create_access_token


router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signup", response_model=Token, status_code=201)
async def signup(
    email: str = Form(...),
    password: str = Form(..., min_length=6),
    avatar: Optional[UploadFile] = File(None),
    service: UserService = Depends(get_user_service),
):
    data = await avatar.read() if avatar is not None else None
    content_type = (avatar.content_type if avatar is not None else None) or "image/jpeg"
    session = Session(service)
    uid = await session.sign_up(email, password, data, content_type)
    return Token(access_token=create_access_token(uid), user=UserPublic.from_user(session.state.snapshot.user))


@router.post("/login", response_model=Token)
async def login(body: LoginRequest, service: UserService = Depends(get_user_service)):
    session = Session(service)
    uid = await session.sign_in(body.email, body.password)
    user = session.state.snapshot.user
    return Token(access_token=create_access_token(uid), user=UserPublic.from_user(user) if user else None)


@router.post("/logout", response_model=SessionView)
async def logout(token: TokenPayload = Depends(get_token), service: UserService = Depends(get_user_service)):
    session = Session(service, uid=token.sub)
    await session.sign_out(token)
    return session.state.snapshot


@router.get("/me", response_model=UserPublic)
async def me(current_user: str = Depends(get_current_user), service: UserService = Depends(get_user_service)):
    session = Session(service, uid=current_user)
    user = await session.fetch_current_user()
    if user is None:
        raise NotAuthenticated(session.state.snapshot.error_message or "Could not find uid")
    return UserPublic.from_user(user)
