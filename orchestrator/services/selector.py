"""
Provider selection: deterministic, ordered failover candidates.
"""
from typing import List, Optional

from orchestrator.api.schemas import (
    INELIGIBLE_STATUSES,
    ProviderFilter,
    ProviderRecord,
    SelectionConstraints,
)
from orchestrator.core.clock import Clock, utc_now
from orchestrator.core.exceptions import ProviderUnavailableError
from orchestrator.core.logger import get_logger
from orchestrator.services.ledger import UsageLedger
from orchestrator.services.registry import ProviderRegistry

logger = get_logger(__name__)


class ProviderSelector:
    """
    Orders eligible providers for a request.

    A provider is eligible when it is enabled, not ``unhealthy``,
    ``disabled`` or in ``maintenance`` (``unknown`` counts as eligible),
    has room in its rate window and has budget left today. Eligible
    providers are sorted by priority, ties broken by id.
    """

    def __init__(self, registry: ProviderRegistry, ledger: UsageLedger, clock: Clock = utc_now):
        self.registry = registry
        self.ledger = ledger
        self.clock = clock

    async def select_candidates(
        self,
        constraints: Optional[SelectionConstraints] = None
    ) -> List[ProviderRecord]:
        """
        Produce the failover order.

        Args:
            constraints: Optional model / type / exclusion narrowing

        Returns:
            Ordered candidates; empty when nothing is eligible
        """
        constraints = constraints or SelectionConstraints()
        providers = await self.registry.list(ProviderFilter(enabled_only=True))
        spend = await self.ledger.daily_spend(self.clock().date())

        candidates: List[ProviderRecord] = []
        for provider in providers:
            if provider.health_status in INELIGIBLE_STATUSES:
                continue
            if not self._matches(provider, constraints):
                continue
            if await self.ledger.rate_limit_remaining(provider.id, provider.max_requests_per_minute) <= 0:
                logger.debug("Provider skipped: rate limit", provider_id=provider.id)
                continue
            # A zero cap marks a provider without a cost budget (local models)
            remaining = provider.max_cost_per_day_usd - spend.get(provider.id, 0.0)
            if provider.max_cost_per_day_usd > 0 and remaining <= 0:
                logger.debug("Provider skipped: daily budget spent", provider_id=provider.id)
                continue
            candidates.append(provider)

        candidates.sort(key=lambda p: (p.priority, p.id))

        if constraints.preferred_provider_id:
            preferred = [p for p in candidates if p.id == constraints.preferred_provider_id]
            if preferred:
                candidates = preferred + [p for p in candidates if p.id != constraints.preferred_provider_id]

        logger.debug("Candidates selected", candidates=[p.id for p in candidates])
        return candidates

    async def require_candidates(
        self,
        constraints: Optional[SelectionConstraints] = None
    ) -> List[ProviderRecord]:
        """
        Same as ``select_candidates`` but raises when nothing is eligible.

        Raises:
            ProviderUnavailableError: No eligible provider
        """
        candidates = await self.select_candidates(constraints)
        if not candidates:
            raise ProviderUnavailableError("No eligible provider")
        return candidates

    @staticmethod
    def _matches(provider: ProviderRecord, constraints: SelectionConstraints) -> bool:
        if provider.id in constraints.exclude_ids:
            return False
        if constraints.provider_types and provider.type not in constraints.provider_types:
            return False
        if constraints.model and constraints.model not in provider.models:
            return False
        return True
