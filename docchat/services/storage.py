import logging
from abc import ABC, abstractmethod

from motor.motor_asyncio import AsyncIOMotorGridFSBucket
from fastapi import UploadFile
from bson import ObjectId
from bson.errors import InvalidId
from gridfs.errors import NoFile

from docchat.errors import NotFoundError, bounded

logger = logging.getLogger(__name__)


class ContentStore(ABC):
    """Raw document bytes, addressed by an opaque reference."""

    @abstractmethod
    async def upload_file(self, file: UploadFile, metadata: dict = None) -> str: ...

    @abstractmethod
    async def fetch_content(self, reference: str) -> bytes: ...

    @abstractmethod
    async def delete_content(self, reference: str) -> None: ...


class GridFSStorage(ContentStore):
    def __init__(self, fs: AsyncIOMotorGridFSBucket, timeout: float = 60.0):
        self.fs = fs
        self.timeout = timeout

    async def upload_file(self, file: UploadFile, metadata: dict = None) -> str:
        grid_in = self.fs.open_upload_stream(file.filename, metadata=metadata)

        while True:
            chunk = await file.read(1024 * 1024) # 1MB chunks
            if not chunk:
                break
            await grid_in.write(chunk)

        await grid_in.close()
        return str(grid_in._id)

    async def fetch_content(self, reference: str) -> bytes:
        file_id = self._object_id(reference)

        async def _read() -> bytes:
            grid_out = await self.fs.open_download_stream(file_id)
            return await grid_out.read()

        try:
            return await bounded(_read(), self.timeout, f"download {reference}")
        except NoFile as e:
            raise NotFoundError(f"Stored content {reference} not found") from e

    async def delete_content(self, reference: str) -> None:
        try:
            await bounded(self.fs.delete(self._object_id(reference)), self.timeout, f"delete {reference}")
        except (NoFile, NotFoundError):
            logger.warning(f"Stored content {reference} already gone")

    @staticmethod
    def _object_id(reference: str) -> ObjectId:
        try:
            return ObjectId(reference)
        except (InvalidId, TypeError) as e:
            raise NotFoundError(f"Invalid content reference {reference!r}") from e
