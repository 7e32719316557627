from typing import Optional

import pydantic
from pydantic import BaseModel, EmailStr, Field, TypeAdapter

from chatsync.errors import ValidationError
from chatsync.schemas.base import DocumentModel


class ChatUser(DocumentModel):
    """A directory entry. Replaced wholesale on re-fetch, never patched."""

    uid: str = Field(min_length=1)
    email: EmailStr
    profile_image_url: Optional[str] = Field(default=None, alias="profileImageUrl")

    @property
    def username(self) -> str:
        return self.email.split("@")[0]


class UserPublic(BaseModel):

    uid: str
    email: EmailStr
    username: str
    profile_image_url: Optional[str] = None

    @classmethod
    def from_user(cls, user: ChatUser) -> "UserPublic":
        return cls(uid=user.uid, email=user.email, username=user.username, profile_image_url=user.profile_image_url)


class LoginRequest(BaseModel):

    email: EmailStr
    password: str = Field(min_length=6)


class Token(BaseModel):

    access_token: str
    token_type: str = "bearer"
    user: Optional[UserPublic] = None


class TokenPayload(BaseModel):

    sub: str
    exp: int
    jti: str


_email_adapter = TypeAdapter(EmailStr)


def normalize_email(value: str) -> str:
    try:
        return _email_adapter.validate_python(value)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid email address: {value!r}") from exc
