"""
Error taxonomy for provider orchestration.

Registry errors propagate to the caller. Probe errors are converted into
an ``unhealthy`` status inside the health checker. Admission denials are
returned as plain results, the exceptions below exist for callers that
want to turn a denial into a failure.
"""
from typing import Dict, List, Optional


class OrchestratorError(Exception):
    """Base class for all orchestration errors."""

    code = "orchestrator_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(OrchestratorError):
    """Provider configuration violates one or more registry rules."""

    code = "validation_error"

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors) or "Invalid provider configuration")
        self.errors = list(errors)


class NotFoundError(OrchestratorError):
    """Unknown provider id."""

    code = "not_found"

    def __init__(self, provider_id: str):
        super().__init__(f"Provider {provider_id} not found")
        self.provider_id = provider_id


class ProviderUnavailableError(OrchestratorError):
    """No eligible provider could serve the request."""

    code = "provider_unavailable"

    def __init__(self, message: str = "No eligible provider", errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.errors = errors or {}


class RateLimitExceeded(OrchestratorError):
    """Provider's per-minute request window is full."""

    code = "rate_limit_exceeded"

    def __init__(self, provider_id: str, limit: int):
        super().__init__(f"Provider {provider_id} reached {limit} requests per minute")
        self.provider_id = provider_id
        self.limit = limit


class BudgetExceeded(OrchestratorError):
    """Provider's daily cost cap is spent."""

    code = "budget_exceeded"

    def __init__(self, provider_id: str, remaining_usd: float):
        super().__init__(f"Provider {provider_id} daily budget exhausted (remaining {remaining_usd:.4f} USD)")
        self.provider_id = provider_id
        self.remaining_usd = remaining_usd


class ProbeError(OrchestratorError):
    """Health probe failed for a reason other than auth or transport."""

    code = "probe_error"
    error_kind = "error"


class TransientProbeError(ProbeError):
    """Network, timeout or throttling failure during a health probe."""

    code = "transient_probe_error"
    error_kind = "transient"


class PermanentAuthError(ProbeError):
    """Credential rejected by the provider; retrying will not help."""

    code = "permanent_auth_error"
    error_kind = "auth"


class CompletionError(OrchestratorError):
    """
    Raised by completion executors to report a failed attempt.

    ``retryable`` decides between retrying the same provider and moving
    straight on to the next candidate.
    """

    code = "completion_error"

    def __init__(self, message: str, kind: str = "unknown", retryable: bool = True):
        super().__init__(message)
        self.kind = kind
        self.retryable = retryable
