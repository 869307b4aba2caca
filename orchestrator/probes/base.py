"""
Base health probe abstract class.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import httpx

from orchestrator.api.schemas import ProviderRecord
from orchestrator.core.exceptions import PermanentAuthError, ProbeError, TransientProbeError
from orchestrator.core.logger import get_logger

logger = get_logger(__name__)


class BaseProbe(ABC):
    """
    Abstract reachability probe for one provider family.

    A probe issues a single lightweight request and returns the models the
    backend reports. Failures are raised as ProbeError subclasses.
    """

    def __init__(self, provider: ProviderRecord, client: httpx.AsyncClient, timeout_seconds: float):
        """
        Initialize probe.

        Args:
            provider: Provider snapshot to probe
            client: Shared async HTTP client
            timeout_seconds: Per-request timeout
        """
        self.provider = provider
        self.client = client
        self.timeout_seconds = timeout_seconds

    @property
    @abstractmethod
    def provider_type(self) -> str:
        """Provider type identifier (e.g., 'openai', 'ollama')."""
        pass

    @property
    @abstractmethod
    def default_base_url(self) -> Optional[str]:
        """Default base URL for the provider."""
        pass

    @property
    def base_url(self) -> Optional[str]:
        """Get effective base URL."""
        return (self.provider.endpoint or self.default_base_url or "").rstrip("/") or None

    def missing_requirement(self) -> Optional[str]:
        """
        Report a configuration gap that makes probing pointless.

        Returns:
            Error message, or None when the probe can run
        """
        if not self.base_url:
            return "Missing base URL"
        return None

    def prepare_headers(self) -> Dict[str, str]:
        """
        Prepare common request headers.

        Returns:
            Headers dictionary
        """
        return {
            "Content-Type": "application/json",
            "User-Agent": "provider-orchestrator/1.0"
        }

    @abstractmethod
    async def probe(self) -> List[str]:
        """
        Check that the provider answers.

        Returns:
            Models the provider reports (may fall back to configured models)
        """
        pass

    async def request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        """
        Send one request and classify the outcome.

        Args:
            method: HTTP method
            path: Path appended to the base URL
            json: Optional JSON body

        Returns:
            Decoded JSON response body

        Raises:
            PermanentAuthError: Credential rejected (401/403)
            TransientProbeError: Timeout, connection failure, 429 or 5xx
            ProbeError: Any other non-success answer
        """
        url = f"{self.base_url}{path}"
        try:
            response = await self.client.request(
                method,
                url,
                headers=self.prepare_headers(),
                json=json,
                timeout=self.timeout_seconds
            )
        except httpx.TimeoutException as e:
            raise TransientProbeError(f"{self.provider_type} health check timed out") from e
        except httpx.HTTPError as e:
            raise TransientProbeError(f"{self.provider_type} unreachable: {e}") from e

        status = response.status_code
        if status in (401, 403):
            raise PermanentAuthError(f"{self.provider_type} rejected the credential (HTTP {status})")
        if status == 429:
            raise TransientProbeError(f"{self.provider_type} rate limit exceeded (HTTP 429)")
        if status >= 500:
            raise TransientProbeError(f"{self.provider_type} server error (HTTP {status})")
        if status >= 400:
            raise ProbeError(f"{self.provider_type} returned HTTP {status}")

        try:
            return response.json()
        except ValueError as e:
            raise ProbeError(f"{self.provider_type} returned an invalid response body") from e
