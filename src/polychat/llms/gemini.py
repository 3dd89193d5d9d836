"""
Google Gemini adapter (Gemini Pro).

Gemini calls the assistant role 'model' and its 1.0 models accept no separate
system instruction, so the system prompt is folded into the first user turn.
A prompt blocked by the safety filters comes back as a response without
candidates plus a 'prompt_feedback.block_reason'; a blocked answer comes back
with finish reason 'SAFETY'. Both become 'ProviderContentError'.
"""

from typing import Any

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from loguru import logger

from polychat.errors import ProviderContentError, ProviderRateLimitError, ProviderUnavailableError
from polychat.llms.base import LLM, LLMMessage, LLMResponse, Roles, Usage

_BLOCKING_FINISH_REASONS = {"SAFETY", "RECITATION", "BLOCKLIST", "PROHIBITED_CONTENT"}


def _finish_reason_name(candidate: Any) -> str | None:
    reason = getattr(candidate, "finish_reason", None)
    if reason is None:
        return None
    return getattr(reason, "name", str(reason))


class GeminiLLM(LLM):
    def __init__(self, model_name: str, google_api_key: str | None = None, client: Any = None) -> None:
        super().__init__(model_name)
        self._api_key = google_api_key
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise ProviderUnavailableError("Google API key is not configured")
            genai.configure(api_key=self._api_key)
            self._client = genai.GenerativeModel(model_name=self.model_name)
        return self._client

    def _contents(self, conversation: list[LLMMessage]) -> list[dict[str, Any]]:
        system, rest = self.split_system(conversation)
        turns = self.alternate_turns(rest)
        if system and turns:
            turns[0] = LLMMessage(role=Roles.USER, content=f"{system}\n\n{turns[0].content}")
        return [
            {"role": "model" if m.role == Roles.ASSISTANT else "user", "parts": [m.content]}
            for m in turns
        ]

    async def generate(self, conversation: list[LLMMessage], temperature: float, max_tokens: int) -> LLMResponse:
        try:
            response = await self.client.generate_content_async(
                self._contents(conversation),
                generation_config={"temperature": temperature, "max_output_tokens": max_tokens},
            )
        except (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests) as e:
            raise ProviderRateLimitError(f"Gemini rate limit: {e}") from e
        except (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied) as e:
            raise ProviderUnavailableError(f"Gemini authentication failed: {e}") from e
        except google_exceptions.GoogleAPIError as e:
            raise ProviderUnavailableError(f"Gemini call failed: {e}") from e

        feedback = getattr(response, "prompt_feedback", None)
        block_reason = getattr(feedback, "block_reason", None) if feedback is not None else None
        if block_reason:
            logger.warning(f"Gemini blocked the prompt: {block_reason}")
            raise ProviderContentError(f"Gemini blocked the prompt ({getattr(block_reason, 'name', block_reason)})")

        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            raise ProviderUnavailableError("Gemini returned no candidates")
        finish_reason = _finish_reason_name(candidates[0])
        if finish_reason in _BLOCKING_FINISH_REASONS:
            logger.warning(f"Gemini withheld the response: finish_reason={finish_reason}")
            raise ProviderContentError(f"Gemini withheld the response ({finish_reason})")

        parts = getattr(candidates[0].content, "parts", None) or []
        text = "".join(getattr(part, "text", "") for part in parts)

        usage = None
        metadata = getattr(response, "usage_metadata", None)
        if metadata is not None:
            usage = Usage(
                prompt_tokens=getattr(metadata, "prompt_token_count", 0) or 0,
                completion_tokens=getattr(metadata, "candidates_token_count", 0) or 0,
            )
        return LLMResponse(content=text, usage=usage, finish_reason=finish_reason)
