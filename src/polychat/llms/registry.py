"""
Model id to provider adapter lookup.

The controller never branches on vendor: it asks the registry for the adapter
bound to a conversation's model id and calls 'generate'. Supporting another
provider means writing one more 'LLM' subclass and one more case in
'build_llm', nothing else.
"""

from collections.abc import Mapping

from loguru import logger

from polychat.config import PolychatSettings
from polychat.errors import UnknownModelError
from polychat.llms.anthropic import AnthropicLLM
from polychat.llms.base import LLM
from polychat.llms.gemini import GeminiLLM
from polychat.llms.local_llm import LocalLLM
from polychat.llms.openai import OpenAILLM
from polychat.models.catalog import AIModelDescriptor, ModelCatalog, Provider


class ProviderRegistry:
    def __init__(self, adapters: Mapping[str, LLM]) -> None:
        self._adapters = dict(adapters)

    def get(self, model_id: str) -> LLM:
        try:
            return self._adapters[model_id]
        except KeyError:
            raise UnknownModelError(f"No provider adapter registered for model {model_id!r}") from None


def build_llm(model: AIModelDescriptor, settings: PolychatSettings) -> LLM:
    """Instantiate the adapter for one catalog entry."""
    match model.provider:
        case Provider.OPENAI:
            return OpenAILLM(
                model_name=model.vendor_model,
                openai_api_key=settings.secret(settings.openai_api_key),
                base_url=settings.openai_base_url,
            )
        case Provider.ANTHROPIC:
            return AnthropicLLM(
                model_name=model.vendor_model,
                anthropic_api_key=settings.secret(settings.anthropic_api_key),
            )
        case Provider.GOOGLE:
            return GeminiLLM(
                model_name=model.vendor_model,
                google_api_key=settings.secret(settings.google_api_key),
            )
        case Provider.LOCAL:
            return LocalLLM(model_name=model.vendor_model, base_url=settings.local_base_url)
        case _:
            raise ValueError(f"Unsupported provider {model.provider!r}")


def build_provider_registry(settings: PolychatSettings, catalog: ModelCatalog) -> ProviderRegistry:
    adapters = {}
    for model in catalog:
        adapters[model.id] = build_llm(model, settings)
        logger.debug(f"Registered {type(adapters[model.id]).__name__} for model {model.id!r}")
    return ProviderRegistry(adapters)
