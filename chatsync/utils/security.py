import uuid
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from chatsync.config import get_settings
from chatsync.errors import NotAuthenticated
from chatsync.schemas.user import TokenPayload


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(subject: str) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    # jti identifies the token when it is revoked on sign-out
    payload = {"sub": subject, "exp": int(expire.timestamp()), "jti": uuid.uuid4().hex}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> TokenPayload:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError as exc:
        raise NotAuthenticated("Token expired") from exc
    except JWTError as exc:
        raise NotAuthenticated("Invalid token") from exc
    if not payload.get("sub") or not payload.get("jti"):
        raise NotAuthenticated("Invalid token")
    return TokenPayload(sub=payload["sub"], exp=payload["exp"], jti=payload["jti"])
