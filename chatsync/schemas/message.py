from datetime import datetime

from pydantic import BaseModel, Field

from chatsync.schemas.base import DocumentModel


class ChatMessage(DocumentModel):
    """One side's copy of a message; immutable after creation."""

    id: str = Field(alias="_id")
    owner_id: str = Field(alias="ownerId", min_length=1)
    peer_id: str = Field(alias="peerId", min_length=1)
    from_id: str = Field(alias="fromId", min_length=1)
    to_id: str = Field(alias="toId", min_length=1)
    text: str
    timestamp: datetime


class SendMessageRequest(BaseModel):

    # empty text is accepted
    text: str = ""


class SendMessageResponse(BaseModel):

    message_id: str
    timestamp: datetime
