"""
Message data model and read interface.

Messages are immutable and ordered by 'sequence', which the store assigns at
commit time and which is also the conversation's turn order. A completed turn
is written as one user message followed by one assistant message in a single
transaction, so readers never observe half a turn. 'metadata' on assistant
messages records the model, the token usage and the processing latency of the
completion that produced it.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict

from polychat.llms.base import Roles, Usage


class MessageMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: str | None = None
    tokens: int | None = None
    processing_time_ms: int | None = None
    usage: Usage | None = None
    system_prompt_id: str | None = None


class Message(BaseModel):
    """A single message within a conversation."""

    model_config = ConfigDict(frozen=True)

    id: str
    conversation_id: str
    role: Roles
    content: str
    create_timestamp: int
    sequence: int = 0
    metadata: MessageMetadata | None = None


def alternation_violations(messages: Sequence[Message]) -> list[int]:
    """Indices of assistant messages not preceded by a user message.

    An empty result means every assistant reply answers exactly one user
    message. System messages are transparent.
    """
    violations = []
    awaiting_reply = False
    for index, message in enumerate(messages):
        if message.role == Roles.USER:
            awaiting_reply = True
        elif message.role == Roles.ASSISTANT:
            if not awaiting_reply:
                violations.append(index)
            awaiting_reply = False
    return violations


class MessageDatabase(ABC):
    """Abstract repository for 'Message' records."""

    @abstractmethod
    async def get_messages_by_conversation_id(self, conversation_id: str) -> list[Message]:
        """All messages of a conversation in 'sequence' order."""
        pass

    @abstractmethod
    async def get_message_by_id(self, message_id: str) -> Message | None:
        pass
