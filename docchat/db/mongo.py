import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorGridFSBucket
from beanie import init_beanie
from docchat.config import get_settings
from docchat.models.core import Conversation, Message
from docchat.models.files import DocumentRecord

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    fs: AsyncIOMotorGridFSBucket = None

    async def connect(self):
        settings = get_settings()
        self.client = AsyncIOMotorClient(settings.MONGODB_URI)
        db = self.client[settings.MONGODB_DATABASE]

        self.fs = AsyncIOMotorGridFSBucket(db)

        await init_beanie(database=db, document_models=[Conversation, Message, DocumentRecord])
        logger.info(f"Connected to MongoDB: {settings.MONGODB_DATABASE}")

    def collection(self, name: str):
        return self.client[get_settings().MONGODB_DATABASE][name]

    async def close(self):
        if self.client:
            self.client.close()

db = Database()
