"""Unit tests for the in-memory conversation store."""

import pytest

from polychat.conversation_database.data_models.conversation import Conversation
from polychat.conversation_database.data_models.message import Message, alternation_violations
from polychat.conversation_database.data_models.settings import ConversationSettings
from polychat.conversation_database.in_memory import InMemoryConversationStore, build_store
from polychat.errors import StoreError
from polychat.llms.base import Roles


def message(message_id: str, role: Roles, conversation_id: str = "c1") -> Message:
    return Message(id=message_id, conversation_id=conversation_id, role=role, content=message_id, create_timestamp=1)


async def add_conversation(store: InMemoryConversationStore, conversation_id: str = "c1") -> None:
    async with store.transaction() as tx:
        tx.add_conversation(
            Conversation(id=conversation_id, user_id="u", create_timestamp=1, update_timestamp=1, title="t")
        )
        tx.save_settings(
            ConversationSettings(conversation_id=conversation_id, model="gpt-4o", temperature=0.7, max_tokens=10)
        )


class TestTransactions:
    """Test atomic commits."""

    @pytest.mark.asyncio
    async def test_commit_assigns_sequence(self):
        """Messages are ordered by commit sequence."""
        store = InMemoryConversationStore()
        await add_conversation(store)
        async with store.transaction() as tx:
            tx.add_message(message("u1", Roles.USER))
            tx.add_message(message("a1", Roles.ASSISTANT))

        messages = await store.messages.get_messages_by_conversation_id("c1")
        assert [(m.id, m.sequence) for m in messages] == [("u1", 0), ("a1", 1)]
        assert (await store.messages.get_message_by_id("a1")).role == Roles.ASSISTANT

    @pytest.mark.asyncio
    async def test_failed_operation_rolls_back_everything(self):
        """A failing operation leaves no trace of the earlier ones."""
        store = InMemoryConversationStore()
        await add_conversation(store)

        with pytest.raises(StoreError):
            async with store.transaction() as tx:
                tx.add_message(message("u1", Roles.USER))
                tx.add_message(message("orphan", Roles.ASSISTANT, conversation_id="missing"))

        assert await store.messages.get_messages_by_conversation_id("c1") == []

    @pytest.mark.asyncio
    async def test_exception_in_block_discards_staged_writes(self):
        """Raising inside the block commits nothing."""
        store = InMemoryConversationStore()
        await add_conversation(store)

        with pytest.raises(RuntimeError):
            async with store.transaction() as tx:
                tx.add_message(message("u1", Roles.USER))
                raise RuntimeError("cancelled")

        assert await store.messages.get_messages_by_conversation_id("c1") == []

    @pytest.mark.asyncio
    async def test_delete_cascades(self):
        """Deleting a conversation removes its messages and settings."""
        store = InMemoryConversationStore()
        await add_conversation(store)
        async with store.transaction() as tx:
            tx.add_message(message("u1", Roles.USER))
        async with store.transaction() as tx:
            tx.delete_conversation("c1")

        assert await store.conversations.get_conversation_by_id("c1") is None
        assert await store.messages.get_messages_by_conversation_id("c1") == []
        assert await store.settings.get_settings("c1") is None

    @pytest.mark.asyncio
    async def test_duplicate_conversation_rejected(self):
        """Conversation ids are unique."""
        store = InMemoryConversationStore()
        await add_conversation(store)
        with pytest.raises(StoreError):
            await add_conversation(store)

    @pytest.mark.asyncio
    async def test_built_in_prompts_are_seeded(self):
        """Built-in prompts are visible to every user."""
        store = InMemoryConversationStore()
        prompts = await store.system_prompts.get_system_prompts_by_user_id("anyone")
        assert {p.id for p in prompts} >= {"default", "concise", "coder"}

    def test_build_store(self):
        """Only the memory scheme is available."""
        assert isinstance(build_store("memory://"), InMemoryConversationStore)
        with pytest.raises(ValueError, match="Unsupported store URL"):
            build_store("postgresql://localhost/chat")


class TestAlternation:
    """Test the turn alternation check."""

    def test_alternating_history_is_valid(self):
        """User/assistant pairs, with system messages in between, are valid."""
        history = [
            message("s", Roles.SYSTEM),
            message("u1", Roles.USER),
            message("a1", Roles.ASSISTANT),
            message("u2", Roles.USER),
        ]
        assert alternation_violations(history) == []

    def test_consecutive_assistant_messages_are_flagged(self):
        """A second reply to the same user message is a violation."""
        history = [message("u1", Roles.USER), message("a1", Roles.ASSISTANT), message("a2", Roles.ASSISTANT)]
        assert alternation_violations(history) == [2]
