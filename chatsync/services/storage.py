"""
Avatar blob storage on top of GridFS.
"""

import logging
from typing import Optional

from gridfs.errors import NoFile
from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorGridFSBucket

from chatsync.config import get_settings
from chatsync.errors import ReadFailed, WriteFailed, wrap


logger = logging.getLogger(__name__)


class BlobStorage:

    def __init__(self, db: AsyncIOMotorDatabase, bucket_name: str = "avatars") -> None:
        self._bucket = AsyncIOMotorGridFSBucket(db, bucket_name=bucket_name)
        self.bucket_name = bucket_name

    def url_for(self, path: str) -> str:
        return f"{get_settings().public_base_url}/{self.bucket_name}/{path}"

    async def put(self, path: str, data: bytes, content_type: str = "image/jpeg") -> str:
        """Store ``data`` under ``path``, replacing any earlier file, and return its URL."""
        try:
            cursor = self._bucket.find({"filename": path})
            async for old in cursor:
                await self._bucket.delete(old._id)
            await self._bucket.upload_from_stream(path, data, metadata={"contentType": content_type})
        except Exception as exc:
            raise wrap(exc, WriteFailed, "Failed to push image to storage") from exc
        logger.info("Stored blob %s/%s (%d bytes)", self.bucket_name, path, len(data))
        return self.url_for(path)

    async def get(self, path: str) -> Optional[tuple[bytes, str]]:
        """Return ``(data, content_type)`` or None when nothing is stored under ``path``."""
        try:
            stream = await self._bucket.open_download_stream_by_name(path)
            data = await stream.read()
        except NoFile:
            return None
        except Exception as exc:
            raise wrap(exc, ReadFailed, "Failed to read image from storage") from exc
        metadata = stream.metadata or {}
        return data, metadata.get("contentType", "application/octet-stream")
