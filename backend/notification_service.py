from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime
import logging

from escrow_core import ChatCollaborator

logger = logging.getLogger(__name__)


class MongoChatCollaborator(ChatCollaborator):
    """
    Posts system messages into a project-professional chat thread (INSERT ONLY).

    Delivery to the participants is handled by the chat service reading the
    messages collection.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db.messages

    async def post_system_message(self, thread_ref: str, text: str) -> None:
        message = {
            "project_professional_id": thread_ref,
            "sender_type": "system",
            "content": text,
            "created_at": datetime.utcnow()
        }
        await self.collection.insert_one(message)
        logger.info(f"System message posted to thread:{thread_ref}")
