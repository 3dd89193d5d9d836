"""
Conversation data model and read interface.

Conversations are created, updated and deleted only through a
'StoreTransaction'; 'ConversationDatabase' exposes the reads. Deleting a
conversation cascades to its messages and settings inside the same transaction.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class Conversation(BaseModel):
    """A single conversation session owned by a user."""

    id: str
    user_id: str
    create_timestamp: int
    update_timestamp: int
    title: str


class ConversationDatabase(ABC):
    """Abstract repository for 'Conversation' records."""

    @abstractmethod
    async def get_conversations_by_user_id(self, user_id: str) -> list[Conversation]:
        pass

    @abstractmethod
    async def get_conversation_by_id(self, conversation_id: str) -> Conversation | None:
        pass
