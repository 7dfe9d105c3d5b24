"""Provider id -> provider class."""
from __future__ import annotations
from typing import Any, Dict, Type
from ..common.constants import PROVIDER_LOCAL, PROVIDER_OLLAMA, PROVIDER_OPENAI
from ..common.errors import UnknownProviderError
from .provider import EmbeddingProvider
from .local import LocalEmbeddingProvider
from .remote import OllamaEmbeddingProvider, OpenAIEmbeddingProvider

PROVIDERS: Dict[str, Type[EmbeddingProvider]] = {
    PROVIDER_LOCAL: LocalEmbeddingProvider,
    PROVIDER_OLLAMA: OllamaEmbeddingProvider,
    PROVIDER_OPENAI: OpenAIEmbeddingProvider,
}

def register(name: str, provider_class: Type[EmbeddingProvider]) -> None:
    PROVIDERS[name] = provider_class

def create(name: str, registry: Dict[str, Type[EmbeddingProvider]] | None = None, **options: Any) -> EmbeddingProvider:
    registry = PROVIDERS if registry is None else registry
    try:
        provider_class = registry[name]
    except KeyError:
        raise UnknownProviderError(f"Unknown provider: {name}", provider=name) from None
    return provider_class(**options)
