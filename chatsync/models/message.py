from datetime import datetime
from typing import TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    # partition key: one copy per (ownerId, peerId)
    ownerId: str
    peerId: str
    fromId: str
    toId: str
    text: str
    timestamp: datetime
