"""
OpenAI chat completions adapter (GPT-4o, GPT-4o-mini).

The SDK's own retry loop is disabled ('max_retries=0') because retry policy
belongs to the controller; this adapter only classifies each failure.
"""

from typing import Any

import openai
from loguru import logger

from polychat.errors import ProviderContentError, ProviderRateLimitError, ProviderUnavailableError
from polychat.llms.base import LLM, LLMMessage, LLMResponse, Usage

_CONTENT_POLICY_CODES = {"content_policy_violation", "content_filter"}


class OpenAILLM(LLM):
    def __init__(
        self,
        model_name: str,
        openai_api_key: str | None = None,
        base_url: str | None = None,
        client: Any = None,
    ) -> None:
        super().__init__(model_name)
        self._api_key = openai_api_key
        self._base_url = base_url
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise ProviderUnavailableError("OpenAI API key is not configured")
            self._client = openai.AsyncOpenAI(api_key=self._api_key, base_url=self._base_url, max_retries=0)
        return self._client

    async def generate(self, conversation: list[LLMMessage], temperature: float, max_tokens: int) -> LLMResponse:
        try:
            response = await self.client.chat.completions.create(
                model=self.model_name,
                messages=[{"role": str(m.role), "content": m.content} for m in conversation],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.RateLimitError as e:
            raise ProviderRateLimitError(f"OpenAI rate limit: {e}") from e
        except openai.BadRequestError as e:
            if getattr(e, "code", None) in _CONTENT_POLICY_CODES:
                raise ProviderContentError(f"OpenAI rejected the request: {e}") from e
            raise ProviderUnavailableError(f"OpenAI rejected the request: {e}") from e
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise ProviderUnavailableError(f"OpenAI authentication failed: {e}") from e
        except openai.APIStatusError as e:
            raise ProviderUnavailableError(f"OpenAI returned status {e.status_code}: {e}") from e
        except openai.APIConnectionError as e:
            raise ProviderUnavailableError(f"Could not reach OpenAI: {e}") from e
        except openai.APIError as e:
            raise ProviderUnavailableError(f"OpenAI request failed: {e}") from e

        if not response.choices:
            raise ProviderUnavailableError("OpenAI returned no choices")
        choice = response.choices[0]
        if choice.finish_reason == "content_filter":
            logger.warning(f"OpenAI response for {self.model_name} stopped by content filter")
            raise ProviderContentError("OpenAI withheld the response under its content policy")

        usage = None
        if getattr(response, "usage", None) is not None:
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
            )
        return LLMResponse(content=choice.message.content or "", usage=usage, finish_reason=choice.finish_reason)
