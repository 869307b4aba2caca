"""
Probe factory for creating probe instances.
"""
from typing import Dict, Type
import httpx

from orchestrator.api.schemas import ProviderRecord
from orchestrator.probes.base import BaseProbe
from orchestrator.probes.keyed import AnthropicProbe, GoogleProbe, OpenAICompatibleProbe, PerplexityProbe
from orchestrator.probes.ollama import OllamaProbe


class ProbeFactory:
    """Factory for creating probe instances."""

    # Registry of probe classes per provider type
    _probes: Dict[str, Type[BaseProbe]] = {
        "openai": OpenAICompatibleProbe,
        "mistral": OpenAICompatibleProbe,
        "groq": OpenAICompatibleProbe,
        "perplexity": PerplexityProbe,
        "anthropic": AnthropicProbe,
        "google": GoogleProbe,
        "ollama": OllamaProbe,
    }

    @classmethod
    def create_probe(
        cls,
        provider: ProviderRecord,
        client: httpx.AsyncClient,
        timeout_seconds: float
    ) -> BaseProbe:
        """
        Create a probe for a provider.

        Args:
            provider: Provider snapshot
            client: Shared async HTTP client
            timeout_seconds: Per-request timeout

        Returns:
            Probe instance

        Raises:
            ValueError: If provider type is not supported
        """
        provider_type = provider.type.value
        if provider_type not in cls._probes:
            raise ValueError(
                f"Unsupported provider type: {provider_type}. "
                f"Available types: {', '.join(cls._probes.keys())}"
            )
        return cls._probes[provider_type](provider, client, timeout_seconds)

    @classmethod
    def get_supported_types(cls) -> list[str]:
        """List provider types that have a probe."""
        return list(cls._probes.keys())
