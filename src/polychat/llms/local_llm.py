"""
Local model adapter.

Local inference is a declared but unimplemented capability. The adapter exists
so the 'local' model id resolves to a provider like any other, and calling it
fails with 'ProviderNotImplementedError', which callers can tell apart from a
provider outage and answer with a fallback model.
"""

from polychat.errors import ProviderNotImplementedError
from polychat.llms.base import LLM, LLMMessage, LLMResponse


class LocalLLM(LLM):
    def __init__(self, model_name: str, base_url: str | None = None) -> None:
        super().__init__(model_name)
        self.base_url = base_url

    async def generate(self, conversation: list[LLMMessage], temperature: float, max_tokens: int) -> LLMResponse:
        raise ProviderNotImplementedError(f"Local model inference ({self.model_name}) is not available yet")
