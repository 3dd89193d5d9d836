"""
System prompt data model and read interface.

Prompts are immutable once stored. Revising a prompt stores a new version whose
'previous_version_id' points at the old one, so the 'system_prompt_id' recorded
in a message's metadata always resolves to the exact text that was sent.
"""

from abc import ABC, abstractmethod
from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class PromptScope(StrEnum):
    BUILT_IN = "built_in"
    USER = "user"


class SystemPrompt(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    scope: PromptScope
    name: str
    user_id: str | None = None
    version: int = 1
    previous_version_id: str | None = None
    create_timestamp: int = 0

    def visible_to(self, user_id: str) -> bool:
        return self.scope == PromptScope.BUILT_IN or self.user_id == user_id


BUILT_IN_PROMPTS: tuple[SystemPrompt, ...] = (
    SystemPrompt(
        id="default",
        name="Default",
        scope=PromptScope.BUILT_IN,
        text="You are a helpful assistant. Answer clearly and accurately.",
    ),
    SystemPrompt(
        id="concise",
        name="Concise",
        scope=PromptScope.BUILT_IN,
        text="You are a helpful assistant. Keep every answer as short as possible.",
    ),
    SystemPrompt(
        id="coder",
        name="Coding assistant",
        scope=PromptScope.BUILT_IN,
        text=(
            "You are an expert software engineer. Answer with working code and a brief explanation. "
            "Point out bugs and edge cases you notice."
        ),
    ),
)


class SystemPromptDatabase(ABC):
    """Abstract repository for 'SystemPrompt' records."""

    @abstractmethod
    async def get_system_prompt_by_id(self, prompt_id: str) -> SystemPrompt | None:
        pass

    @abstractmethod
    async def get_system_prompts_by_user_id(self, user_id: str) -> list[SystemPrompt]:
        """Built-in prompts plus the ones authored by 'user_id'."""
        pass
