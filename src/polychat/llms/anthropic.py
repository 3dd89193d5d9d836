"""
Anthropic messages adapter (Claude 3.5 Sonnet).

The Messages API takes the system prompt as a separate parameter, requires the
first turn to come from the user and does not accept two consecutive turns from
the same role. Both constraints are absorbed here so the controller can send
any trimmed window.
"""

from typing import Any

import anthropic
from loguru import logger

from polychat.errors import ProviderContentError, ProviderRateLimitError, ProviderUnavailableError
from polychat.llms.base import LLM, LLMMessage, LLMResponse, Usage

MAX_TEMPERATURE = 1.0
OVERLOADED_STATUS = 529


class AnthropicLLM(LLM):
    def __init__(self, model_name: str, anthropic_api_key: str | None = None, client: Any = None) -> None:
        super().__init__(model_name)
        self._api_key = anthropic_api_key
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise ProviderUnavailableError("Anthropic API key is not configured")
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key, max_retries=0)
        return self._client

    async def generate(self, conversation: list[LLMMessage], temperature: float, max_tokens: int) -> LLMResponse:
        system, rest = self.split_system(conversation)
        kwargs: dict[str, Any] = {
            "model": self.model_name,
            "messages": [{"role": str(m.role), "content": m.content} for m in self.alternate_turns(rest)],
            "max_tokens": max_tokens,
            "temperature": min(temperature, MAX_TEMPERATURE),
        }
        if system:
            kwargs["system"] = system

        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.RateLimitError as e:
            raise ProviderRateLimitError(f"Anthropic rate limit: {e}") from e
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as e:
            raise ProviderUnavailableError(f"Anthropic authentication failed: {e}") from e
        except anthropic.APIStatusError as e:
            if e.status_code == OVERLOADED_STATUS:
                raise ProviderRateLimitError(f"Anthropic is overloaded: {e}") from e
            raise ProviderUnavailableError(f"Anthropic returned status {e.status_code}: {e}") from e
        except anthropic.APIConnectionError as e:
            raise ProviderUnavailableError(f"Could not reach Anthropic: {e}") from e
        except anthropic.APIError as e:
            raise ProviderUnavailableError(f"Anthropic request failed: {e}") from e

        if response.stop_reason == "refusal":
            logger.warning(f"Anthropic refused to answer with {self.model_name}")
            raise ProviderContentError("Anthropic declined to respond under its usage policy")

        text = "".join(block.text for block in response.content if getattr(block, "type", None) == "text")
        usage = None
        if getattr(response, "usage", None) is not None:
            usage = Usage(prompt_tokens=response.usage.input_tokens, completion_tokens=response.usage.output_tokens)
        return LLMResponse(content=text, usage=usage, finish_reason=response.stop_reason)
