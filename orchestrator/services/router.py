"""
Failover router: retry-then-failover over the selector's candidates.
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from orchestrator.api.schemas import ProviderRecord, SelectionConstraints, UsageRecordCreate
from orchestrator.core.exceptions import CompletionError, ProviderUnavailableError
from orchestrator.core.logger import get_logger
from orchestrator.services.ledger import UsageLedger
from orchestrator.services.selector import ProviderSelector

logger = get_logger(__name__)


@dataclass
class CompletionOutcome:
    """What a completion executor reports for a successful call."""

    model: str
    tokens_in: int = 0
    tokens_out: int = 0
    cost_usd: float = 0.0
    payload: Any = None


@dataclass
class RoutingResult:
    """Successful routing: the provider that answered and how we got there."""

    provider: ProviderRecord
    outcome: CompletionOutcome
    attempts: int
    fallbacks_used: int = 0
    errors: Dict[str, str] = field(default_factory=dict)


CompletionCall = Callable[[ProviderRecord], Awaitable[CompletionOutcome]]


class FailoverRouter:
    """
    Runs a caller-supplied completion against candidates in order.

    Features:
    - One rate-limit slot consumed per attempt
    - Up to ``retry_attempts + 1`` tries per provider with exponential backoff
    - Non-retryable failures move straight to the next candidate
    - Every attempt recorded in the usage ledger
    """

    def __init__(
        self,
        selector: ProviderSelector,
        ledger: UsageLedger,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize router.

        Args:
            selector: Candidate source
            ledger: Attempt recording and admission
            backoff_base_seconds: First retry delay
            backoff_max_seconds: Upper bound on any retry delay
            sleep: Awaitable used between retries
        """
        self.selector = selector
        self.ledger = ledger
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        return min(self.backoff_base_seconds * (2 ** attempt), self.backoff_max_seconds)

    async def execute(
        self,
        call: CompletionCall,
        constraints: Optional[SelectionConstraints] = None,
        user_id: Optional[str] = None,
    ) -> RoutingResult:
        """
        Route one completion with retry-then-failover.

        Args:
            call: Async completion executor for a given provider
            constraints: Candidate narrowing passed to the selector
            user_id: Owner of the request, recorded with every attempt

        Returns:
            Routing result from the first provider that succeeded

        Raises:
            ProviderUnavailableError: No candidate, or every candidate failed
        """
        candidates = await self.selector.require_candidates(constraints)
        requested_model = constraints.model if constraints else None

        errors: Dict[str, str] = {}
        attempts = 0
        for position, provider in enumerate(candidates):
            model = requested_model or provider.models[0]

            for attempt in range(provider.retry_attempts + 1):
                if not await self.ledger.check_rate_limit(provider.id, provider.max_requests_per_minute):
                    errors[provider.id] = "rate limit exceeded"
                    break

                attempts += 1
                start = time.monotonic()
                try:
                    outcome = await asyncio.wait_for(call(provider), timeout=provider.timeout_ms / 1000)
                except asyncio.TimeoutError:
                    error = CompletionError(f"timed out after {provider.timeout_ms}ms", kind="timeout")
                except CompletionError as e:
                    error = e
                except Exception as e:
                    logger.error(
                        "Completion executor raised",
                        provider_id=provider.id,
                        error=str(e),
                        exc_info=True,
                    )
                    error = CompletionError(str(e) or e.__class__.__name__, kind="error")
                else:
                    await self._record(provider, outcome.model, user_id, start, outcome=outcome)
                    logger.info(
                        "Request served",
                        provider_id=provider.id,
                        provider=provider.name,
                        attempts=attempts,
                        fallbacks_used=position,
                    )
                    return RoutingResult(
                        provider=provider,
                        outcome=outcome,
                        attempts=attempts,
                        fallbacks_used=position,
                        errors=errors,
                    )

                await self._record(provider, model, user_id, start, error=error)
                errors[provider.id] = error.message
                logger.warning(
                    f"Provider {provider.name} attempt {attempt + 1}/{provider.retry_attempts + 1} failed",
                    provider_id=provider.id,
                    error=error.message,
                    kind=error.kind,
                    retryable=error.retryable,
                )

                if not error.retryable:
                    break
                if attempt < provider.retry_attempts:
                    await self._sleep(self.backoff_delay(attempt))

        logger.error("All providers failed", providers_tried=list(errors.keys()), errors=errors)
        raise ProviderUnavailableError("All providers failed", errors)

    async def _record(
        self,
        provider: ProviderRecord,
        model: str,
        user_id: Optional[str],
        start: float,
        outcome: Optional[CompletionOutcome] = None,
        error: Optional[CompletionError] = None,
    ) -> None:
        await self.ledger.record_attempt(UsageRecordCreate(
            provider_id=provider.id,
            provider_name=provider.name,
            provider_type=provider.type,
            model=model,
            user_id=user_id,
            tokens_in=outcome.tokens_in if outcome else 0,
            tokens_out=outcome.tokens_out if outcome else 0,
            cost_usd=outcome.cost_usd if outcome else 0.0,
            latency_ms=int((time.monotonic() - start) * 1000),
            success=outcome is not None,
            error_kind=error.kind if error else None,
            error_message=error.message if error else None,
        ))
