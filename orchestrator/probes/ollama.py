"""
Probe for a locally-hosted Ollama server.
"""
from typing import List, Optional

from orchestrator.core.exceptions import ProbeError
from orchestrator.probes.base import BaseProbe


class OllamaProbe(BaseProbe):
    """Reads the installed model tags; a server with no models is not usable."""

    @property
    def provider_type(self) -> str:
        return "ollama"

    @property
    def default_base_url(self) -> Optional[str]:
        # No default: a local provider must say where it lives
        return None

    async def probe(self) -> List[str]:
        data = await self.request("GET", "/api/tags")
        models = [item["name"] for item in data.get("models", []) if "name" in item]
        if not models:
            raise ProbeError("Ollama is running but no models are installed")
        return models
