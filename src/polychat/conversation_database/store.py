"""
Conversation store interface.

'ConversationStore' bundles the read repositories with a 'transaction()' unit
of work. All writes go through a 'StoreTransaction': operations are staged and
become visible together when the 'async with' block exits normally, or not at
all if it raises. The controller opens a transaction only around the persist
step of a completion, never across a provider call.

Concrete implementations: 'InMemoryConversationStore'.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager

from polychat.conversation_database.data_models.conversation import Conversation, ConversationDatabase
from polychat.conversation_database.data_models.message import Message, MessageDatabase
from polychat.conversation_database.data_models.settings import ConversationSettings, SettingsDatabase
from polychat.conversation_database.data_models.system_prompt import SystemPrompt, SystemPromptDatabase


class StoreTransaction(ABC):
    """Staged writes, applied atomically on commit."""

    @abstractmethod
    def add_conversation(self, conversation: Conversation) -> None:
        pass

    @abstractmethod
    def update_conversation(self, conversation: Conversation) -> None:
        pass

    @abstractmethod
    def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation together with its messages and settings."""
        pass

    @abstractmethod
    def add_message(self, message: Message) -> None:
        """Append a message; its 'sequence' is assigned at commit."""
        pass

    @abstractmethod
    def save_settings(self, settings: ConversationSettings) -> None:
        pass

    @abstractmethod
    def add_system_prompt(self, prompt: SystemPrompt) -> None:
        pass


class ConversationStore(ABC):
    conversations: ConversationDatabase
    messages: MessageDatabase
    settings: SettingsDatabase
    system_prompts: SystemPromptDatabase

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[StoreTransaction]:
        """Open a unit of work. Raises 'StoreError' if the commit fails."""
        pass
