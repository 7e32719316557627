"""
Error taxonomy shared by the store clients, the engines and the HTTP layer.

Every error carries a stable ``code`` and a ``transient`` flag. Transient
errors come from connection-level failures of MongoDB or Redis and are worth
retrying; everything else is permanent.
"""

from typing import Optional

from pymongo.errors import ConnectionFailure, PyMongoError
from redis import exceptions as redis_errors


class ChatSyncError(Exception):

    code = "error"

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.transient = transient

    def __str__(self) -> str:
        return self.message


class AuthError(ChatSyncError):
    code = "auth_error"


class NotAuthenticated(AuthError):
    code = "not_authenticated"


class InvalidCredentials(AuthError):
    code = "invalid_credentials"


class AccountExists(AuthError):
    code = "account_exists"


class StoreError(ChatSyncError):
    code = "store_error"


class WriteFailed(StoreError):
    code = "write_failed"


class ReadFailed(StoreError):
    code = "read_failed"


class StreamError(ChatSyncError):
    code = "stream_error"


class ListenerFailed(StreamError):
    code = "listener_failed"


class ValidationError(ChatSyncError):
    code = "validation_error"


class MissingAvatar(ValidationError):
    code = "missing_avatar"


class InvalidDocument(ValidationError):
    code = "invalid_document"


def is_transient(exc: BaseException) -> bool:
    """Tell connection-level hiccups apart from permanent failures."""
    if isinstance(exc, ChatSyncError):
        return exc.transient
    if isinstance(exc, ConnectionFailure):
        return True
    if isinstance(exc, PyMongoError):
        return exc.has_error_label("RetryableWriteError") or exc.has_error_label("TransientTransactionError")
    return isinstance(exc, (redis_errors.ConnectionError, redis_errors.TimeoutError, ConnectionError, TimeoutError))


def wrap(exc: BaseException, error_cls: type, message: Optional[str] = None) -> ChatSyncError:
    if isinstance(exc, ChatSyncError):
        return exc
    text = message or str(exc)
    if message and str(exc):
        text = f"{message}: {exc}"
    return error_cls(text, transient=is_transient(exc))
