"""
Core provider abstractions and message data models.

All concrete provider adapters ('OpenAILLM', 'AnthropicLLM', 'GeminiLLM',
'LocalLLM') implement the 'LLM' ABC. The shared message format ('LLMMessage') and
result type ('LLMResponse') are deliberately vendor-agnostic so the controller
and the context window builder never need to know which provider is in use.

Adapters translate vendor failures into the provider errors of
'polychat.errors': 'ProviderUnavailableError', 'ProviderRateLimitError' and
'ProviderContentError'. Vendor exception types never escape an adapter.
"""

from abc import ABC, abstractmethod
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class Roles(StrEnum):
    """Conversation roles as used by chat completion APIs."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class LLMMessage(BaseModel):
    """A single message in a prompt sent to a provider."""

    content: str = ""
    role: Roles = Roles.ASSISTANT


class Usage(BaseModel):
    """Token usage of one completion. 'total_tokens' is always the sum of the other two."""

    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _derive_total(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            data["total_tokens"] = data.get("prompt_tokens", 0) + data.get("completion_tokens", 0)
        return data


class LLMResponse(BaseModel):
    """
    Normalized result of a generation call.

    'usage' is None when the vendor did not report token counts; the controller
    then falls back to its own estimates.
    """

    content: str
    usage: Usage | None = None
    finish_reason: str | None = None


class LLM(ABC):
    """
    Abstract base class for provider adapters.

    Concrete implementations adapt a specific vendor client to a common
    interface. Sampling parameters are passed per call because they come from
    the conversation's settings, which may change between requests.

    Attributes:
        model_name: The vendor's identifier for the model this adapter calls.
    """

    def __init__(self, model_name: str) -> None:
        self.model_name = model_name

    @abstractmethod
    async def generate(self, conversation: list[LLMMessage], temperature: float, max_tokens: int) -> LLMResponse:
        """Return a single complete response for the given prompt."""
        pass

    @staticmethod
    def split_system(conversation: list[LLMMessage]) -> tuple[str | None, list[LLMMessage]]:
        """Separate system messages for vendors that take the system prompt out of band."""
        system = [m.content for m in conversation if m.role == Roles.SYSTEM]
        rest = [m for m in conversation if m.role != Roles.SYSTEM]
        return ("\n\n".join(system) if system else None), rest

    @staticmethod
    def alternate_turns(conversation: list[LLMMessage]) -> list[LLMMessage]:
        """Drop leading non-user messages and merge consecutive same-role messages.

        A trimmed window can start with an assistant reply whose user message fell
        out of the budget; vendors that enforce strict user/assistant alternation
        reject such prompts.
        """
        turns: list[LLMMessage] = []
        for message in conversation:
            if not turns and message.role != Roles.USER:
                continue
            if turns and turns[-1].role == message.role:
                turns[-1] = LLMMessage(role=message.role, content=turns[-1].content + "\n\n" + message.content)
                continue
            turns.append(message)
        return turns
