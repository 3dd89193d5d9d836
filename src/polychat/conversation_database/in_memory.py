"""
In-memory conversation store.

State lives in one '_State' snapshot. A transaction stages its operations and
the commit applies them to a copy of the snapshot, swapping the copy in only
after every operation succeeded. The commit runs without suspension points, so
concurrent readers see either the old or the new snapshot and nothing between.
"""

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from loguru import logger

from polychat.conversation_database.data_models.conversation import Conversation, ConversationDatabase
from polychat.conversation_database.data_models.message import Message, MessageDatabase
from polychat.conversation_database.data_models.settings import ConversationSettings, SettingsDatabase
from polychat.conversation_database.data_models.system_prompt import (
    BUILT_IN_PROMPTS,
    SystemPrompt,
    SystemPromptDatabase,
)
from polychat.conversation_database.store import ConversationStore, StoreTransaction
from polychat.errors import StoreError


@dataclass
class _State:
    conversations: dict[str, Conversation] = field(default_factory=dict)
    messages: dict[str, list[Message]] = field(default_factory=dict)
    settings: dict[str, ConversationSettings] = field(default_factory=dict)
    system_prompts: dict[str, SystemPrompt] = field(default_factory=dict)

    def copy(self) -> "_State":
        return _State(
            conversations=dict(self.conversations),
            messages={cid: list(messages) for cid, messages in self.messages.items()},
            settings=dict(self.settings),
            system_prompts=dict(self.system_prompts),
        )


_Operation = Callable[[_State], None]


class _InMemoryTransaction(StoreTransaction):
    def __init__(self, store: "InMemoryConversationStore") -> None:
        self._store = store
        self.operations: list[_Operation] = []

    def add_conversation(self, conversation: Conversation) -> None:
        self.operations.append(lambda state: self._store._apply_add_conversation(state, conversation))

    def update_conversation(self, conversation: Conversation) -> None:
        self.operations.append(lambda state: self._store._apply_update_conversation(state, conversation))

    def delete_conversation(self, conversation_id: str) -> None:
        self.operations.append(lambda state: self._store._apply_delete_conversation(state, conversation_id))

    def add_message(self, message: Message) -> None:
        self.operations.append(lambda state: self._store._apply_add_message(state, message))

    def save_settings(self, settings: ConversationSettings) -> None:
        self.operations.append(lambda state: self._store._apply_save_settings(state, settings))

    def add_system_prompt(self, prompt: SystemPrompt) -> None:
        self.operations.append(lambda state: self._store._apply_add_system_prompt(state, prompt))


class _Conversations(ConversationDatabase):
    def __init__(self, store: "InMemoryConversationStore") -> None:
        self._store = store

    async def get_conversations_by_user_id(self, user_id: str) -> list[Conversation]:
        conversations = [c for c in self._store._state.conversations.values() if c.user_id == user_id]
        return sorted(conversations, key=lambda c: c.update_timestamp, reverse=True)

    async def get_conversation_by_id(self, conversation_id: str) -> Conversation | None:
        return self._store._state.conversations.get(conversation_id)


class _Messages(MessageDatabase):
    def __init__(self, store: "InMemoryConversationStore") -> None:
        self._store = store

    async def get_messages_by_conversation_id(self, conversation_id: str) -> list[Message]:
        return list(self._store._state.messages.get(conversation_id, []))

    async def get_message_by_id(self, message_id: str) -> Message | None:
        for messages in self._store._state.messages.values():
            for message in messages:
                if message.id == message_id:
                    return message
        return None


class _Settings(SettingsDatabase):
    def __init__(self, store: "InMemoryConversationStore") -> None:
        self._store = store

    async def get_settings(self, conversation_id: str) -> ConversationSettings | None:
        return self._store._state.settings.get(conversation_id)


class _SystemPrompts(SystemPromptDatabase):
    def __init__(self, store: "InMemoryConversationStore") -> None:
        self._store = store

    async def get_system_prompt_by_id(self, prompt_id: str) -> SystemPrompt | None:
        return self._store._state.system_prompts.get(prompt_id)

    async def get_system_prompts_by_user_id(self, user_id: str) -> list[SystemPrompt]:
        return [p for p in self._store._state.system_prompts.values() if p.visible_to(user_id)]


class InMemoryConversationStore(ConversationStore):
    def __init__(self, seed_prompts: bool = True) -> None:
        self._state = _State()
        if seed_prompts:
            self._state.system_prompts = {p.id: p for p in BUILT_IN_PROMPTS}
        self.conversations = _Conversations(self)
        self.messages = _Messages(self)
        self.settings = _Settings(self)
        self.system_prompts = _SystemPrompts(self)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        tx = _InMemoryTransaction(self)
        yield tx
        self._commit(tx.operations)

    def _commit(self, operations: list[_Operation]) -> None:
        if not operations:
            return
        staged = self._state.copy()
        for operation in operations:
            operation(staged)
        self._state = staged
        logger.debug(f"Committed {len(operations)} store operations")

    def _apply_add_conversation(self, state: _State, conversation: Conversation) -> None:
        if conversation.id in state.conversations:
            raise StoreError(f"Conversation {conversation.id} already exists")
        state.conversations[conversation.id] = conversation
        state.messages[conversation.id] = []

    def _apply_update_conversation(self, state: _State, conversation: Conversation) -> None:
        if conversation.id not in state.conversations:
            raise StoreError(f"Conversation {conversation.id} does not exist")
        state.conversations[conversation.id] = conversation

    def _apply_delete_conversation(self, state: _State, conversation_id: str) -> None:
        if state.conversations.pop(conversation_id, None) is None:
            raise StoreError(f"Conversation {conversation_id} does not exist")
        state.messages.pop(conversation_id, None)
        state.settings.pop(conversation_id, None)

    def _apply_add_message(self, state: _State, message: Message) -> None:
        if message.conversation_id not in state.conversations:
            raise StoreError(f"Conversation {message.conversation_id} does not exist")
        messages = state.messages.setdefault(message.conversation_id, [])
        messages.append(message.model_copy(update={"sequence": len(messages)}))

    def _apply_save_settings(self, state: _State, settings: ConversationSettings) -> None:
        if settings.conversation_id not in state.conversations:
            raise StoreError(f"Conversation {settings.conversation_id} does not exist")
        state.settings[settings.conversation_id] = settings

    def _apply_add_system_prompt(self, state: _State, prompt: SystemPrompt) -> None:
        if prompt.id in state.system_prompts:
            raise StoreError(f"System prompt {prompt.id} already exists and is immutable")
        state.system_prompts[prompt.id] = prompt


def build_store(store_url: str) -> ConversationStore:
    """Select the storage backend for a store URL."""
    scheme = store_url.split("://", 1)[0].lower()
    match scheme:
        case "memory":
            return InMemoryConversationStore()
        case _:
            raise ValueError(f"Unsupported store URL {store_url!r}. Only 'memory://' is available.")
