"""
Completion controller (Facade).

'CompletionController' is the single entry point for application logic. It
coordinates the conversation store, the model catalog, the provider registry
and the context window builder to handle the full lifecycle of a conversation
turn, plus the conversation and system prompt management around it.

'submit_completion' drives one request through the states

    RECEIVED -> VALIDATED -> CONTEXT_BUILT -> GENERATING -> PERSISTED -> RESPONDED

and any failure leaves through FAILED, with the last state reached recorded as
'failed_state' on the raised error. A failed persist therefore reports
'generating'; the error kind ('StoreError') is what tells it apart from a
provider failure. Exceptions that are not 'PolychatError' are wrapped in
'InternalError' so callers only ever see structured failures. Requests on the same conversation are serialized by a
keyed lock held from validation to persistence, so history is never read while
another turn on the same conversation is being generated. The store
transaction spans only the persist step: the user message, the assistant reply
and the conversation's new timestamp are committed together or not at all.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from enum import StrEnum
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from polychat.config import PolychatSettings
from polychat.context.window import ContextWindow, ContextWindowBuilder
from polychat.conversation_database.data_models.conversation import Conversation
from polychat.conversation_database.data_models.message import Message, MessageMetadata
from polychat.conversation_database.data_models.settings import (
    MAX_TEMPERATURE,
    MIN_TEMPERATURE,
    ConversationSettings,
)
from polychat.conversation_database.data_models.system_prompt import PromptScope, SystemPrompt
from polychat.conversation_database.in_memory import build_store
from polychat.conversation_database.store import ConversationStore
from polychat.errors import (
    AuthorizationError,
    DeadlineExceededError,
    InputError,
    InternalError,
    NotFoundError,
    PolychatError,
    ProviderTimeoutError,
    StoreError,
)
from polychat.llms.base import LLM, LLMResponse, Roles, Usage
from polychat.llms.registry import ProviderRegistry, build_provider_registry
from polychat.models.catalog import AIModelDescriptor, ModelCatalog
from polychat.tokens.accountant import TokenAccountant
from polychat.utils.database import generate_uid
from polychat.utils.locks import KeyedLock
from polychat.utils.retry import RetryPolicy
from polychat.utils.time import get_current_timestamp

DEFAULT_CONVERSATION_TITLE = "New Conversation"
TITLE_LENGTH = 40


class CompletionState(StrEnum):
    RECEIVED = "received"
    VALIDATED = "validated"
    CONTEXT_BUILT = "context_built"
    GENERATING = "generating"
    PERSISTED = "persisted"
    RESPONDED = "responded"
    FAILED = "failed"


class SettingsOverride(BaseModel):
    """Request-scoped settings; never written back to the conversation."""

    model: str | None = None
    temperature: float | None = Field(default=None, ge=MIN_TEMPERATURE, le=MAX_TEMPERATURE)
    max_tokens: int | None = Field(default=None, gt=0)


class CompletionRequest(BaseModel):
    conversation_id: str = Field(min_length=1)
    content: str
    settings_override: SettingsOverride | None = None

    @field_validator("content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message content must not be empty")
        return value


class CompletionResponse(BaseModel):
    conversation_id: str
    message: Message
    user_message: Message
    usage: Usage
    state: CompletionState = CompletionState.RESPONDED


class ConversationInput(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    model: str | None = None
    temperature: float | None = Field(default=None, ge=MIN_TEMPERATURE, le=MAX_TEMPERATURE)
    max_tokens: int | None = Field(default=None, gt=0)
    system_prompt_id: str | None = None


class SettingsUpdate(BaseModel):
    """Partial settings update. 'clear_system_prompt' removes the prompt reference."""

    model: str | None = None
    temperature: float | None = Field(default=None, ge=MIN_TEMPERATURE, le=MAX_TEMPERATURE)
    max_tokens: int | None = Field(default=None, gt=0)
    system_prompt_id: str | None = None
    clear_system_prompt: bool = False


class SystemPromptInput(BaseModel):
    name: str = Field(min_length=1)
    text: str = Field(min_length=1)


class ClientConversation(Conversation):
    messages: list[Message]
    settings: ConversationSettings


def _parse(model: type[BaseModel], data: Any) -> Any:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InputError(f"Invalid {model.__name__}: {e}") from e


class _Trace:
    """Current state of one completion request."""

    def __init__(self, conversation_id: str, listener: Callable[[str, CompletionState], None] | None) -> None:
        self.conversation_id = conversation_id
        self.state = CompletionState.RECEIVED
        self._listener = listener
        self._notify(self.state)

    def advance(self, state: CompletionState) -> None:
        logger.debug(f"Conversation {self.conversation_id}: {self.state} -> {state}")
        self.state = state
        self._notify(state)

    def fail(self, error: PolychatError) -> None:
        if error.failed_state is None:
            error.failed_state = str(self.state)
        logger.debug(f"Conversation {self.conversation_id}: {self.state} -> failed ({error.kind})")
        self._notify(CompletionState.FAILED)

    def _notify(self, state: CompletionState) -> None:
        if self._listener is not None:
            self._listener(self.conversation_id, state)


class CompletionController:
    def __init__(
        self,
        store: ConversationStore,
        catalog: ModelCatalog,
        registry: ProviderRegistry,
        settings: PolychatSettings | None = None,
        builder: ContextWindowBuilder | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_transition: Callable[[str, CompletionState], None] | None = None,
    ):
        self.store = store
        self.catalog = catalog
        self.registry = registry
        self.settings = settings or PolychatSettings()
        self.builder = builder or ContextWindowBuilder()
        self.accountant = self.builder.accountant
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=self.settings.max_attempts,
            backoff_seconds=self.settings.retry_backoff_seconds,
        )
        self._sleep = sleep
        self._on_transition = on_transition
        self._locks = KeyedLock()

    @classmethod
    def from_settings(cls, settings: PolychatSettings | None = None) -> "CompletionController":
        settings = settings or PolychatSettings()
        catalog = ModelCatalog()
        return cls(
            store=build_store(settings.store_url),
            catalog=catalog,
            registry=build_provider_registry(settings, catalog),
            settings=settings,
        )

    # Completion

    async def submit_completion(
        self,
        request: CompletionRequest | Mapping[str, Any],
        user_id: str,
        timeout: float | None = None,
    ) -> CompletionResponse:
        """Generate and persist the assistant's reply to a new user message.

        'timeout' bounds the whole request, including waiting for the
        conversation lock. On expiry nothing is persisted and
        'DeadlineExceededError' is raised.
        """
        conversation_id = request.get("conversation_id", "") if isinstance(request, Mapping) else request.conversation_id
        trace = _Trace(str(conversation_id), self._on_transition)
        try:
            request = _parse(CompletionRequest, request)
            try:
                async with asyncio.timeout(timeout):
                    async with self._locks.hold(request.conversation_id, wait=self.settings.busy_policy == "wait"):
                        return await self._complete(request, user_id, trace)
            except TimeoutError as e:
                raise DeadlineExceededError(f"Request deadline of {timeout}s exceeded") from e
        except PolychatError as e:
            trace.fail(e)
            logger.warning(f"Completion for conversation {trace.conversation_id} failed: {e.kind}: {e.message}")
            raise
        except Exception as e:
            error = InternalError(f"Unexpected {type(e).__name__}: {e}")
            trace.fail(error)
            logger.exception(f"Completion for conversation {trace.conversation_id} failed unexpectedly")
            raise error from e

    async def _complete(self, request: CompletionRequest, user_id: str, trace: _Trace) -> CompletionResponse:
        conversation = await self._get_owned_conversation(request.conversation_id, user_id)
        settings = self._effective_settings(await self._get_settings(conversation.id), request.settings_override)
        model = self.catalog.get(settings.model)
        llm = self.registry.get(model.id)
        system_prompt = await self._resolve_system_prompt(settings.system_prompt_id, user_id)
        history = await self.store.messages.get_messages_by_conversation_id(conversation.id)
        trace.advance(CompletionState.VALIDATED)

        window = self.builder.build(
            history,
            settings,
            model,
            request.content,
            system_prompt=system_prompt.text if system_prompt else None,
        )
        trace.advance(CompletionState.CONTEXT_BUILT)

        trace.advance(CompletionState.GENERATING)
        started = time.perf_counter()
        response = await self.retry_policy.run(
            lambda: self._generate(llm, model, window, settings),
            description=f"Completion with {model.id}",
            sleep=self._sleep,
        )
        processing_time_ms = int((time.perf_counter() - started) * 1000)
        usage = response.usage or Usage(
            prompt_tokens=window.prompt_tokens,
            completion_tokens=self.accountant.estimate(response.content),
        )

        now = get_current_timestamp()
        user_message = Message(
            id=generate_uid(),
            conversation_id=conversation.id,
            role=Roles.USER,
            content=request.content,
            create_timestamp=now,
            sequence=len(history),
            metadata=MessageMetadata(tokens=self.accountant.estimate(request.content)),
        )
        assistant_message = Message(
            id=generate_uid(),
            conversation_id=conversation.id,
            role=Roles.ASSISTANT,
            content=response.content,
            create_timestamp=get_current_timestamp(),
            sequence=len(history) + 1,
            metadata=MessageMetadata(
                model=model.id,
                tokens=usage.completion_tokens,
                processing_time_ms=processing_time_ms,
                usage=usage,
                system_prompt_id=system_prompt.id if system_prompt else None,
            ),
        )
        title = conversation.title
        if not history and title == DEFAULT_CONVERSATION_TITLE:
            title = request.content.strip()[:TITLE_LENGTH]

        try:
            async with self.store.transaction() as tx:
                tx.add_message(user_message)
                tx.add_message(assistant_message)
                tx.update_conversation(conversation.model_copy(update={"update_timestamp": now, "title": title}))
        except StoreError:
            logger.error(f"Persisting turn for conversation {conversation.id} failed")
            raise
        except Exception as e:
            logger.error(f"Persisting turn for conversation {conversation.id} failed: {e}")
            raise StoreError(f"Could not persist the turn: {e}") from e
        trace.advance(CompletionState.PERSISTED)

        logger.info(
            f"Completion for conversation {conversation.id} with {model.id}: "
            f"{usage.total_tokens} tokens in {processing_time_ms} ms"
        )
        trace.advance(CompletionState.RESPONDED)
        return CompletionResponse(
            conversation_id=conversation.id,
            message=assistant_message,
            user_message=user_message,
            usage=usage,
        )

    async def _generate(
        self,
        llm: LLM,
        model: AIModelDescriptor,
        window: ContextWindow,
        settings: ConversationSettings,
    ) -> LLMResponse:
        try:
            return await asyncio.wait_for(
                llm.generate(window.messages, settings.temperature, settings.max_tokens),
                timeout=self.settings.provider_timeout_seconds,
            )
        except TimeoutError as e:
            raise ProviderTimeoutError(
                f"{model.display_name} did not answer within {self.settings.provider_timeout_seconds}s"
            ) from e

    def _effective_settings(
        self, settings: ConversationSettings, override: SettingsOverride | None
    ) -> ConversationSettings:
        if override is None:
            return settings
        return settings.model_copy(update=override.model_dump(exclude_none=True))

    # Conversations

    async def create_conversation(
        self, user_id: str, conversation_input: ConversationInput | Mapping[str, Any] | None = None
    ) -> ClientConversation:
        conversation_input = _parse(ConversationInput, conversation_input or {})
        model_id = conversation_input.model or self.settings.default_model
        self.catalog.get(model_id)
        if conversation_input.system_prompt_id is not None:
            await self._resolve_system_prompt(conversation_input.system_prompt_id, user_id)

        now = get_current_timestamp()
        conversation = Conversation(
            id=generate_uid(),
            user_id=user_id,
            create_timestamp=now,
            update_timestamp=now,
            title=conversation_input.title or DEFAULT_CONVERSATION_TITLE,
        )
        settings = ConversationSettings(
            conversation_id=conversation.id,
            model=model_id,
            temperature=(
                conversation_input.temperature
                if conversation_input.temperature is not None
                else self.settings.default_temperature
            ),
            max_tokens=conversation_input.max_tokens or self.settings.default_max_tokens,
            system_prompt_id=conversation_input.system_prompt_id,
        )
        async with self.store.transaction() as tx:
            tx.add_conversation(conversation)
            tx.save_settings(settings)
        logger.info(f"Created conversation {conversation.id} for user {user_id} with model {model_id}")
        return ClientConversation(**conversation.model_dump(), messages=[], settings=settings)

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        return await self.store.conversations.get_conversations_by_user_id(user_id)

    async def get_conversation(self, conversation_id: str, user_id: str) -> ClientConversation:
        conversation = await self._get_owned_conversation(conversation_id, user_id)
        messages = await self.store.messages.get_messages_by_conversation_id(conversation_id)
        settings = await self._get_settings(conversation_id)
        return ClientConversation(**conversation.model_dump(), messages=messages, settings=settings)

    async def rename_conversation(self, conversation_id: str, user_id: str, title: str) -> Conversation:
        if not title.strip():
            raise InputError("Title must not be empty")
        conversation = await self._get_owned_conversation(conversation_id, user_id)
        updated = conversation.model_copy(update={"title": title, "update_timestamp": get_current_timestamp()})
        async with self.store.transaction() as tx:
            tx.update_conversation(updated)
        return updated

    async def update_settings(
        self, conversation_id: str, user_id: str, update: SettingsUpdate | Mapping[str, Any]
    ) -> ConversationSettings:
        """Replace the conversation's settings. Requests already in flight keep the old ones."""
        update = _parse(SettingsUpdate, update)
        await self._get_owned_conversation(conversation_id, user_id)
        current = await self._get_settings(conversation_id)

        changes = update.model_dump(exclude_none=True, exclude={"clear_system_prompt"})
        if update.clear_system_prompt:
            changes["system_prompt_id"] = None
        if "model" in changes:
            self.catalog.get(changes["model"])
        if changes.get("system_prompt_id") is not None:
            await self._resolve_system_prompt(changes["system_prompt_id"], user_id)

        settings = ConversationSettings.model_validate({**current.model_dump(), **changes})
        async with self.store.transaction() as tx:
            tx.save_settings(settings)
        logger.info(f"Updated settings of conversation {conversation_id}: {changes}")
        return settings

    async def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        """Delete a conversation with its messages and settings.

        Waits for an in-flight completion on the same conversation to finish.
        """
        await self._get_owned_conversation(conversation_id, user_id)
        async with self._locks.hold(conversation_id, wait=True):
            if await self.store.conversations.get_conversation_by_id(conversation_id) is None:
                return False
            async with self.store.transaction() as tx:
                tx.delete_conversation(conversation_id)
        logger.info(f"Deleted conversation {conversation_id}")
        return True

    async def get_usage(self, conversation_id: str, user_id: str) -> Usage:
        """Lifetime usage, summed from the assistant messages' metadata."""
        await self._get_owned_conversation(conversation_id, user_id)
        messages = await self.store.messages.get_messages_by_conversation_id(conversation_id)
        return self.accountant.sum_usage(
            message.metadata.usage
            for message in messages
            if message.role == Roles.ASSISTANT and message.metadata is not None
        )

    def list_models(self) -> list[AIModelDescriptor]:
        return list(self.catalog)

    # System prompts

    async def list_system_prompts(self, user_id: str) -> list[SystemPrompt]:
        return await self.store.system_prompts.get_system_prompts_by_user_id(user_id)

    async def create_system_prompt(
        self, user_id: str, prompt_input: SystemPromptInput | Mapping[str, Any]
    ) -> SystemPrompt:
        prompt_input = _parse(SystemPromptInput, prompt_input)
        prompt = SystemPrompt(
            id=generate_uid(),
            name=prompt_input.name,
            text=prompt_input.text,
            scope=PromptScope.USER,
            user_id=user_id,
            create_timestamp=get_current_timestamp(),
        )
        async with self.store.transaction() as tx:
            tx.add_system_prompt(prompt)
        return prompt

    async def revise_system_prompt(self, prompt_id: str, user_id: str, text: str) -> SystemPrompt:
        """Store a new version of a user-authored prompt. The old version stays resolvable."""
        previous = await self._resolve_system_prompt(prompt_id, user_id)
        if previous.scope != PromptScope.USER:
            raise AuthorizationError(f"Built-in system prompt {prompt_id} cannot be revised")
        if not text.strip():
            raise InputError("System prompt text must not be empty")
        prompt = SystemPrompt(
            id=generate_uid(),
            name=previous.name,
            text=text,
            scope=PromptScope.USER,
            user_id=user_id,
            version=previous.version + 1,
            previous_version_id=previous.id,
            create_timestamp=get_current_timestamp(),
        )
        async with self.store.transaction() as tx:
            tx.add_system_prompt(prompt)
        return prompt

    # Lookups

    async def _get_owned_conversation(self, conversation_id: str, user_id: str) -> Conversation:
        conversation = await self.store.conversations.get_conversation_by_id(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        if conversation.user_id != user_id:
            raise AuthorizationError(f"User {user_id} does not have access to conversation {conversation_id}")
        return conversation

    async def _get_settings(self, conversation_id: str) -> ConversationSettings:
        settings = await self.store.settings.get_settings(conversation_id)
        if settings is None:
            raise StoreError(f"Conversation {conversation_id} has no settings record")
        return settings

    async def _resolve_system_prompt(self, prompt_id: str | None, user_id: str) -> SystemPrompt | None:
        if prompt_id is None:
            return None
        prompt = await self.store.system_prompts.get_system_prompt_by_id(prompt_id)
        if prompt is None:
            raise NotFoundError(f"System prompt {prompt_id} not found")
        if not prompt.visible_to(user_id):
            raise AuthorizationError(f"User {user_id} does not have access to system prompt {prompt_id}")
        return prompt
