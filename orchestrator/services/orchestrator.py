"""
Composition of the orchestration components plus cross-component operations.
"""
from typing import Any, Dict, List, Mapping, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orchestrator.api.schemas import (
    BatchStatus,
    HealthStatus,
    ProviderRecord,
    ReloadEntry,
    ReloadOutcome,
    ReloadReport,
    provider_config_errors,
)
from orchestrator.core.cache import RedisCache
from orchestrator.core.clock import Clock, utc_now
from orchestrator.core.config import Settings
from orchestrator.core.exceptions import ValidationError
from orchestrator.core.logger import get_logger
from orchestrator.probes.factory import ProbeFactory
from orchestrator.services.analytics import AnalyticsAggregator, AnalyticsThresholds
from orchestrator.services.export import UsageExportService
from orchestrator.services.health_check import HealthChecker, HealthScheduler
from orchestrator.services.ledger import UsageLedger
from orchestrator.services.rate_limiter import RedisWindowRateLimiter, SlidingWindowRateLimiter
from orchestrator.services.registry import ProviderRegistry
from orchestrator.services.retention import UsageRetentionService
from orchestrator.services.router import FailoverRouter
from orchestrator.services.selector import ProviderSelector

logger = get_logger(__name__)

PROVIDER_TYPES_WITH_KEYS = ("openai", "anthropic", "google", "mistral", "groq", "perplexity")


class ProviderOrchestrator:
    """Holds every component and the operations that span several of them."""

    def __init__(
        self,
        registry: ProviderRegistry,
        checker: HealthChecker,
        scheduler: HealthScheduler,
        ledger: UsageLedger,
        selector: ProviderSelector,
        router: FailoverRouter,
        analytics: AnalyticsAggregator,
        retention: UsageRetentionService,
        exporter: UsageExportService,
        clock: Clock = utc_now,
    ):
        self.registry = registry
        self.checker = checker
        self.scheduler = scheduler
        self.ledger = ledger
        self.selector = selector
        self.router = router
        self.analytics = analytics
        self.retention = retention
        self.exporter = exporter
        self.clock = clock

    @classmethod
    def build(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        client: httpx.AsyncClient,
        cache: Optional[RedisCache] = None,
        clock: Clock = utc_now,
    ) -> "ProviderOrchestrator":
        """
        Compose all components from settings.

        Args:
            settings: Application settings
            session_factory: Async session factory
            client: Shared HTTP client for probes
            cache: Optional Redis cache (health status and rate windows)
            clock: Returns the current naive UTC time

        Returns:
            Ready-to-use orchestrator (background tasks not started)
        """
        startup_credentials = {}
        for provider_type in PROVIDER_TYPES_WITH_KEYS:
            credential = settings.startup_credential(provider_type)
            if credential is not None:
                startup_credentials[provider_type] = credential
        registry = ProviderRegistry(
            session_factory,
            clock=clock,
            startup_credentials=startup_credentials,
            ollama_base_url=settings.ollama_base_url,
        )

        if cache is not None and cache.enabled:
            rate_limiter = RedisWindowRateLimiter(cache, settings.rate_limit_window_seconds, clock)
        else:
            rate_limiter = SlidingWindowRateLimiter(settings.rate_limit_window_seconds, clock)

        checker = HealthChecker(
            registry,
            client,
            cache=cache,
            clock=clock,
            timeout_cap_ms=settings.health_check_timeout_cap_ms,
            concurrency=settings.health_check_concurrency,
            history_size=settings.health_history_size,
        )
        ledger = UsageLedger(session_factory, registry, rate_limiter=rate_limiter, clock=clock)
        selector = ProviderSelector(registry, ledger, clock=clock)

        return cls(
            registry=registry,
            checker=checker,
            scheduler=HealthScheduler(checker, registry, settings.health_check_tick_seconds, clock),
            ledger=ledger,
            selector=selector,
            router=FailoverRouter(
                selector,
                ledger,
                backoff_base_seconds=settings.retry_backoff_base_seconds,
                backoff_max_seconds=settings.retry_backoff_max_seconds,
            ),
            analytics=AnalyticsAggregator(
                ledger, registry, clock=clock, thresholds=AnalyticsThresholds.from_settings(settings)
            ),
            retention=UsageRetentionService(
                ledger,
                retention_days=settings.usage_retention_days,
                cleanup_interval_hours=settings.usage_cleanup_interval_hours,
            ),
            exporter=UsageExportService(ledger),
            clock=clock,
        )

    async def update_provider(self, provider_id: str, partial: Mapping[str, Any]) -> ProviderRecord:
        """
        Update a provider and re-probe it in the background.

        The re-check is a tracked task; its result lands on the provider
        record and a failure is logged.
        """
        record = await self.registry.update(provider_id, partial)
        if record.enabled and record.health_status != HealthStatus.MAINTENANCE:
            self.scheduler.schedule_recheck(provider_id)
        return record

    async def refresh_local_models(self, provider_id: str) -> ProviderRecord:
        """
        Replace a local provider's model list with what the instance reports.

        Raises:
            ValidationError: Provider is not locally hosted or has no endpoint
            ProbeError: The instance could not be queried
        """
        provider = await self.registry.get(provider_id)
        if not provider.is_local:
            raise ValidationError(["type: model refresh is only supported for local providers"])

        probe = ProbeFactory.create_probe(provider, self.checker.client, self.checker.probe_timeout_seconds(provider))
        missing = probe.missing_requirement()
        if missing:
            raise ValidationError([f"endpoint: {missing}"])

        models = await probe.probe()
        record = await self.registry.replace_models(provider_id, models)
        logger.info("Local models refreshed", provider_id=provider_id, count=len(models))
        return record

    async def reload_configuration(self, validate_only: bool = False) -> ReloadReport:
        """
        Re-validate every provider and probe the valid, enabled ones.

        Args:
            validate_only: Skip the health probes

        Returns:
            Per-provider report with a three-way overall status
        """
        providers = await self.registry.list()
        invalid: Dict[str, List[str]] = {}
        for provider in providers:
            errors = provider_config_errors(provider.config_dict())
            if errors:
                invalid[provider.id] = errors

        health = {}
        if not validate_only:
            to_probe = [p for p in providers if p.id not in invalid and p.enabled]
            health = {r.provider_id: r for r in await self.checker.check_many(to_probe)}

        entries: List[ReloadEntry] = []
        for provider in providers:
            result = health.get(provider.id)
            if provider.id in invalid:
                outcome = ReloadOutcome.INVALID
            elif result is not None and result.status == HealthStatus.UNHEALTHY:
                outcome = ReloadOutcome.ERROR
            else:
                outcome = ReloadOutcome.OK
            entries.append(ReloadEntry(
                provider_id=provider.id,
                name=provider.name,
                outcome=outcome,
                errors=invalid.get(provider.id, []),
                health=result,
            ))

        enabled = [p for p in providers if p.enabled]
        warnings: List[str] = []
        if not enabled:
            warnings.append("No providers are enabled")
        top_priority = [p.name for p in enabled if p.priority == 1]
        if enabled and not top_priority:
            warnings.append("No enabled provider has priority 1")
        elif len(top_priority) > 1:
            warnings.append(f"Multiple enabled providers have priority 1: {', '.join(top_priority)}")

        ok = sum(1 for e in entries if e.outcome == ReloadOutcome.OK)
        if entries and ok == len(entries):
            status = BatchStatus.SUCCESS
        elif ok == 0:
            status = BatchStatus.FAILURE
        else:
            status = BatchStatus.PARTIAL

        report = ReloadReport(
            status=status,
            validate_only=validate_only,
            timestamp=self.clock(),
            entries=entries,
            warnings=warnings,
            total_providers=len(providers),
            enabled_providers=len(enabled),
            valid_providers=len(providers) - len(invalid),
            healthy_providers=sum(1 for r in health.values() if r.status == HealthStatus.HEALTHY),
        )
        logger.info(
            "Configuration reloaded",
            status=status.value,
            total=report.total_providers,
            valid=report.valid_providers,
            healthy=report.healthy_providers,
            warnings=len(warnings),
        )
        return report

    def start_background_tasks(self, health_checks: bool = True) -> None:
        if health_checks:
            self.scheduler.start()
        self.retention.start()

    async def stop_background_tasks(self) -> None:
        await self.scheduler.stop()
        await self.retention.stop()
