"""Shared fixtures: a scripted provider adapter and controllers wired to the in-memory store."""

import asyncio
from dataclasses import dataclass, field

import pytest

from polychat.config import PolychatSettings
from polychat.conversation_database.controller import CompletionController
from polychat.conversation_database.data_models.conversation import Conversation
from polychat.conversation_database.data_models.settings import ConversationSettings
from polychat.conversation_database.in_memory import InMemoryConversationStore
from polychat.llms.base import LLM, LLMMessage, LLMResponse, Usage
from polychat.llms.local_llm import LocalLLM
from polychat.llms.registry import ProviderRegistry
from polychat.models.catalog import DEFAULT_MODELS, ModelCatalog

USER_ID = "user-1"


@dataclass
class RecordedCall:
    conversation: list[LLMMessage]
    temperature: float
    max_tokens: int


class ScriptedLLM(LLM):
    """Returns queued outcomes in order; an exception outcome is raised instead of returned."""

    def __init__(self, model_name: str = "scripted", outcomes: list | None = None, delay: float = 0.0) -> None:
        super().__init__(model_name)
        self.outcomes = list(outcomes or [])
        self.delay = delay
        self.calls: list[RecordedCall] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def generate(self, conversation: list[LLMMessage], temperature: float, max_tokens: int) -> LLMResponse:
        self.calls.append(RecordedCall(list(conversation), temperature, max_tokens))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = self.outcomes.pop(0) if self.outcomes else f"Reply {len(self.calls)}"
            if isinstance(outcome, BaseException):
                raise outcome
            if isinstance(outcome, LLMResponse):
                return outcome
            return LLMResponse(content=outcome, usage=Usage(prompt_tokens=12, completion_tokens=7))
        finally:
            self.in_flight -= 1


@dataclass
class Harness:
    controller: CompletionController
    store: InMemoryConversationStore
    llm: ScriptedLLM
    sleeps: list[float] = field(default_factory=list)
    transitions: list[tuple[str, str]] = field(default_factory=list)


def make_settings(**overrides) -> PolychatSettings:
    values = {"retry_backoff_seconds": 0.0, "provider_timeout_seconds": 5.0}
    values.update(overrides)
    return PolychatSettings(_env_file=None, **values)


def make_harness(
    llm: ScriptedLLM | None = None,
    store: InMemoryConversationStore | None = None,
    catalog: ModelCatalog | None = None,
    adapters: dict[str, LLM] | None = None,
    **settings_overrides,
) -> Harness:
    llm = llm or ScriptedLLM()
    store = store or InMemoryConversationStore()
    catalog = catalog or ModelCatalog(DEFAULT_MODELS)
    registry_adapters: dict[str, LLM] = {model.id: llm for model in catalog}
    registry_adapters["local"] = LocalLLM("local")
    registry_adapters.update(adapters or {})
    harness = Harness(controller=None, store=store, llm=llm)  # type: ignore[arg-type]

    async def record_sleep(delay: float) -> None:
        harness.sleeps.append(delay)

    harness.controller = CompletionController(
        store=store,
        catalog=catalog,
        registry=ProviderRegistry(registry_adapters),
        settings=make_settings(**settings_overrides),
        sleep=record_sleep,
        on_transition=lambda conversation_id, state: harness.transitions.append((conversation_id, str(state))),
    )
    return harness


async def seed_conversation(
    store: InMemoryConversationStore,
    conversation_id: str = "conv_123",
    user_id: str = USER_ID,
    model: str = "gpt-4o",
    temperature: float = 0.7,
    max_tokens: int = 1000,
    system_prompt_id: str | None = None,
    title: str = "New Conversation",
) -> Conversation:
    conversation = Conversation(
        id=conversation_id,
        user_id=user_id,
        create_timestamp=1,
        update_timestamp=1,
        title=title,
    )
    async with store.transaction() as tx:
        tx.add_conversation(conversation)
        tx.save_settings(
            ConversationSettings(
                conversation_id=conversation_id,
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
                system_prompt_id=system_prompt_id,
            )
        )
    return conversation


@pytest.fixture
def harness() -> Harness:
    return make_harness()
