"""
Per-conversation generation settings.

Exactly one 'ConversationSettings' record exists per conversation. A record is
replaced wholesale on update; the controller reads it once at the start of a
completion request, so an update never affects a request already in flight.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict, Field

MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0


class ConversationSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    conversation_id: str
    model: str
    temperature: float = Field(ge=MIN_TEMPERATURE, le=MAX_TEMPERATURE)
    max_tokens: int = Field(gt=0)
    system_prompt_id: str | None = None


class SettingsDatabase(ABC):
    """Abstract repository for 'ConversationSettings' records."""

    @abstractmethod
    async def get_settings(self, conversation_id: str) -> ConversationSettings | None:
        pass
