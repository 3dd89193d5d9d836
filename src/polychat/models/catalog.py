"""
Static model configuration.

'AIModelDescriptor' records what the controller and the context window builder
need to know about a model: which provider serves it, the vendor's identifier
for it, and its context window. 'ModelCatalog' is built once at process start
and passed explicitly to the components that size prompts; it has no mutators.
"""

from collections.abc import Iterable, Iterator
from enum import StrEnum
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field

from polychat.errors import UnknownModelError


class Provider(StrEnum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    LOCAL = "local"


class AIModelDescriptor(BaseModel):
    """
    A model that conversations can select.

    Attributes:
        id: Identifier stored in conversation settings, e.g. 'gpt-4o'.
        vendor_model: Identifier sent to the provider's API.
        context_window: Maximum number of tokens the model accepts as input plus output.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    provider: Provider
    vendor_model: str
    context_window: int = Field(gt=0)
    supports_streaming: bool = True


DEFAULT_MODELS: tuple[AIModelDescriptor, ...] = (
    AIModelDescriptor(
        id="gpt-4o",
        display_name="GPT-4o",
        provider=Provider.OPENAI,
        vendor_model="gpt-4o",
        context_window=128_000,
    ),
    AIModelDescriptor(
        id="gpt-4o-mini",
        display_name="GPT-4o mini",
        provider=Provider.OPENAI,
        vendor_model="gpt-4o-mini",
        context_window=128_000,
    ),
    AIModelDescriptor(
        id="claude-3.5-sonnet",
        display_name="Claude 3.5 Sonnet",
        provider=Provider.ANTHROPIC,
        vendor_model="claude-3-5-sonnet-20241022",
        context_window=200_000,
    ),
    AIModelDescriptor(
        id="gemini-pro",
        display_name="Gemini Pro",
        provider=Provider.GOOGLE,
        vendor_model="gemini-pro",
        context_window=32_760,
    ),
    AIModelDescriptor(
        id="local",
        display_name="Local model",
        provider=Provider.LOCAL,
        vendor_model="local",
        context_window=8_192,
        supports_streaming=False,
    ),
)


class ModelCatalog:
    """Read-only lookup from model id to descriptor."""

    def __init__(self, models: Iterable[AIModelDescriptor] = DEFAULT_MODELS) -> None:
        models_by_id: dict[str, AIModelDescriptor] = {}
        for model in models:
            if model.id in models_by_id:
                raise ValueError(f"Duplicate model id {model.id!r}")
            models_by_id[model.id] = model
        self._models = MappingProxyType(models_by_id)

    def get(self, model_id: str) -> AIModelDescriptor:
        try:
            return self._models[model_id]
        except KeyError:
            raise UnknownModelError(f"Unknown model {model_id!r}") from None

    def __iter__(self) -> Iterator[AIModelDescriptor]:
        return iter(self._models.values())
