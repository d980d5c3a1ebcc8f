"""Provider backends implementing the completion/embedding capability contract."""

from __future__ import annotations

from studybuddy_brain.model.descriptor import ProviderDescriptor
from studybuddy_brain.model_fetchers.base_fetcher import BaseFetcher
from studybuddy_brain.model_fetchers.huggingface_fetcher import HuggingFaceFetcher
from studybuddy_brain.model_fetchers.local_fetcher import LocalFetcher
from studybuddy_brain.model_fetchers.openai_fetcher import OpenAIFetcher
from studybuddy_brain.model_fetchers.openrouter_fetcher import OpenRouterFetcher


def build_fetcher(descriptor: ProviderDescriptor) -> BaseFetcher:
    provider = descriptor.provider_type
    if provider == "openrouter":
        return OpenRouterFetcher(descriptor)
    if provider in {"openai", "openai_compatible", "groq", "cerebras", "mistral"}:
        return OpenAIFetcher(descriptor)
    if provider == "huggingface":
        return HuggingFaceFetcher(descriptor)
    return LocalFetcher(descriptor)


__all__ = [
    "BaseFetcher",
    "HuggingFaceFetcher",
    "LocalFetcher",
    "OpenAIFetcher",
    "OpenRouterFetcher",
    "build_fetcher",
]
