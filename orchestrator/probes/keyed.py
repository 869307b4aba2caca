"""
Probes for cloud providers authenticated with an API key.
"""
from typing import Dict, List, Optional

from orchestrator.core.exceptions import ProbeError
from orchestrator.probes.base import BaseProbe


class KeyedProbe(BaseProbe):
    """Probe that needs a credential before it can say anything useful."""

    @property
    def api_key(self) -> str:
        return self.provider.credential.get_secret_value() if self.provider.credential else ""

    def missing_requirement(self) -> Optional[str]:
        if not self.api_key:
            return "Missing API key"
        return super().missing_requirement()


class OpenAICompatibleProbe(KeyedProbe):
    """Lists models on an OpenAI-style ``/models`` endpoint with a bearer token."""

    _default_urls: Dict[str, str] = {
        "openai": "https://api.openai.com/v1",
        "mistral": "https://api.mistral.ai/v1",
        "groq": "https://api.groq.com/openai/v1",
    }

    @property
    def provider_type(self) -> str:
        return self.provider.type.value

    @property
    def default_base_url(self) -> Optional[str]:
        return self._default_urls.get(self.provider_type)

    def prepare_headers(self) -> Dict[str, str]:
        headers = super().prepare_headers()
        headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def probe(self) -> List[str]:
        data = await self.request("GET", "/models")
        models = [item["id"] for item in data.get("data", []) if "id" in item]
        if not models:
            raise ProbeError(f"No models available from {self.provider_type}")
        return models


class AnthropicProbe(KeyedProbe):
    """Anthropic Messages API probe."""

    @property
    def provider_type(self) -> str:
        return "anthropic"

    @property
    def default_base_url(self) -> str:
        return "https://api.anthropic.com"

    def prepare_headers(self) -> Dict[str, str]:
        headers = super().prepare_headers()
        headers["x-api-key"] = self.api_key
        headers["anthropic-version"] = "2023-06-01"
        return headers

    async def probe(self) -> List[str]:
        data = await self.request("GET", "/v1/models")
        models = [item["id"] for item in data.get("data", []) if "id" in item]
        return models or list(self.provider.models)


class GoogleProbe(KeyedProbe):
    """Gemini API probe."""

    @property
    def provider_type(self) -> str:
        return "google"

    @property
    def default_base_url(self) -> str:
        return "https://generativelanguage.googleapis.com"

    def prepare_headers(self) -> Dict[str, str]:
        headers = super().prepare_headers()
        headers["x-goog-api-key"] = self.api_key
        return headers

    async def probe(self) -> List[str]:
        data = await self.request("GET", "/v1beta/models")
        models = [
            item["name"].replace("models/", "")
            for item in data.get("models", [])
            if "name" in item
        ]
        return models or list(self.provider.models)


class PerplexityProbe(KeyedProbe):
    """Perplexity has no model listing; send a one-token completion instead."""

    @property
    def provider_type(self) -> str:
        return "perplexity"

    @property
    def default_base_url(self) -> str:
        return "https://api.perplexity.ai"

    def prepare_headers(self) -> Dict[str, str]:
        headers = super().prepare_headers()
        headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def probe(self) -> List[str]:
        await self.request(
            "POST",
            "/chat/completions",
            json={
                "model": self.provider.models[0],
                "messages": [{"role": "user", "content": "Hi"}],
                "max_tokens": 1,
            }
        )
        return list(self.provider.models)
