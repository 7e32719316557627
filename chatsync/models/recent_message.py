from datetime import datetime
from typing import TypedDict


class RecentMessageDocument(TypedDict, total=False):
    # "<ownerId>:<peerId>"
    _id: str
    ownerId: str
    peerId: str
    fromId: str
    toId: str
    text: str
    timestamp: datetime
    # peer metadata copied at last-message time
    email: str
    profileImageUrl: str
    unreadMessagesCount: int
