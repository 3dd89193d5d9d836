"""
Context window assembly.

'ContextWindowBuilder.build' turns a conversation's stored history, the active
settings and the target model into the prompt sent to a provider:

    1. The input budget is the model's context window minus the tokens reserved
       for the reply ('settings.max_tokens').
    2. The system prompt (if any) and the new user message are always included
       and paid for first. If they alone exceed the budget the build fails with
       'ContextOverflowError'; the user's text is never truncated.
    3. History is walked from the most recent message backwards. Whole messages
       are taken while they fit; the walk stops at the first message that does
       not, so the window is always a contiguous suffix of the history.

The result depends only on the inputs and the 'TokenAccountant', so the same
history and settings always produce the same window.
"""

from collections.abc import Sequence

from loguru import logger
from pydantic import BaseModel

from polychat.conversation_database.data_models.message import Message
from polychat.conversation_database.data_models.settings import ConversationSettings
from polychat.errors import ContextOverflowError
from polychat.llms.base import LLMMessage, Roles
from polychat.models.catalog import AIModelDescriptor
from polychat.tokens.accountant import TokenAccountant


class ContextWindow(BaseModel):
    """
    An assembled prompt.

    Attributes:
        messages: System prompt, retained history and the new user message, in order.
        prompt_tokens: Estimated token count of 'messages'.
        budget_tokens: Input budget the window was built against.
        included_history: Number of history messages retained.
        dropped_history: Number of older history messages left out.
    """

    messages: list[LLMMessage]
    prompt_tokens: int
    budget_tokens: int
    included_history: int
    dropped_history: int


class ContextWindowBuilder:
    def __init__(self, accountant: TokenAccountant | None = None) -> None:
        self.accountant = accountant or TokenAccountant()

    def budget(self, settings: ConversationSettings, model: AIModelDescriptor) -> int:
        return model.context_window - settings.max_tokens

    def build(
        self,
        history: Sequence[Message],
        settings: ConversationSettings,
        model: AIModelDescriptor,
        new_user_message: str,
        system_prompt: str | None = None,
    ) -> ContextWindow:
        budget = self.budget(settings, model)

        head: list[LLMMessage] = []
        if system_prompt:
            head.append(LLMMessage(role=Roles.SYSTEM, content=system_prompt))
        user_message = LLMMessage(role=Roles.USER, content=new_user_message)

        required = self.accountant.estimate_messages([*head, user_message])
        if required > budget:
            raise ContextOverflowError(
                f"The message needs about {required} tokens with the system prompt, but {model.display_name} "
                f"leaves {max(budget, 0)} tokens for input after reserving {settings.max_tokens} for the reply. "
                "Shorten the message or lower the maximum output tokens.",
                required_tokens=required,
                budget_tokens=budget,
            )

        remaining = budget - required
        retained: list[LLMMessage] = []
        for message in reversed(history):
            candidate = LLMMessage(role=message.role, content=message.content)
            cost = self.accountant.estimate_message(candidate)
            if cost > remaining:
                break
            retained.append(candidate)
            remaining -= cost
        retained.reverse()

        window = ContextWindow(
            messages=[*head, *retained, user_message],
            prompt_tokens=budget - remaining,
            budget_tokens=budget,
            included_history=len(retained),
            dropped_history=len(history) - len(retained),
        )
        logger.debug(
            f"Context window for {model.id}: {window.prompt_tokens}/{budget} tokens, "
            f"{window.included_history} history messages kept, {window.dropped_history} dropped"
        )
        return window
