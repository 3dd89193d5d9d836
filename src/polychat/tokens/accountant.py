"""
Token estimation for context window budgeting.

The estimate is a character heuristic (about four characters per token, the
common average across OpenAI, Anthropic and Google tokenizers) plus a fixed
per-message overhead for role markers and separators. It is deterministic and
monotonic: the same text always prices the same, and appending text never
lowers the price. That matters more here than exactness, because the context
window builder must make reproducible trimming decisions. A BPE tokenizer such
as tiktoken counts for one vendor's vocabulary only, and its count for a prefix
can exceed the count for the longer text, so it is not used here. Exact counts
come back from providers in their usage reports.
"""

import math
from collections.abc import Iterable

from polychat.errors import InputError
from polychat.llms.base import LLMMessage, Usage

CHARS_PER_TOKEN = 4.0
MESSAGE_OVERHEAD_TOKENS = 4


class TokenAccountant:
    def __init__(
        self,
        chars_per_token: float = CHARS_PER_TOKEN,
        message_overhead: int = MESSAGE_OVERHEAD_TOKENS,
    ) -> None:
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        if message_overhead < 0:
            raise ValueError("message_overhead must not be negative")
        self.chars_per_token = chars_per_token
        self.message_overhead = message_overhead

    def estimate(self, text: str | bytes) -> int:
        """Estimated token count of 'text'.

        Raises 'InputError' for bytes that are not valid UTF-8 and for strings
        that cannot be encoded (e.g. lone surrogates).
        """
        if isinstance(text, bytes):
            try:
                text = text.decode("utf-8")
            except UnicodeDecodeError as e:
                raise InputError(f"Text is not valid UTF-8: {e}") from e
        elif not isinstance(text, str):
            raise InputError(f"Expected text, got {type(text).__name__}")
        else:
            try:
                text.encode("utf-8")
            except UnicodeEncodeError as e:
                raise InputError(f"Text contains characters that cannot be encoded: {e}") from e

        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)

    def estimate_message(self, message: LLMMessage) -> int:
        return self.estimate(message.content) + self.message_overhead

    def estimate_messages(self, messages: Iterable[LLMMessage]) -> int:
        return sum(self.estimate_message(m) for m in messages)

    @staticmethod
    def sum_usage(partial_counts: Iterable[Usage | None]) -> Usage:
        """Total of several usage records; missing records count as zero."""
        prompt_tokens = 0
        completion_tokens = 0
        for usage in partial_counts:
            if usage is None:
                continue
            prompt_tokens += usage.prompt_tokens
            completion_tokens += usage.completion_tokens
        return Usage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
