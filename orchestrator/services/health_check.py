"""
Health check service for monitoring provider availability.
"""
import asyncio
import time
from collections import defaultdict, deque
from datetime import timedelta
from typing import Deque, Dict, List, Optional, Sequence, Set

import httpx

from orchestrator.api.schemas import (
    HealthCheckResult,
    HealthStatus,
    ProviderFilter,
    ProviderRecord,
)
from orchestrator.core.cache import RedisCache, health_cache_key
from orchestrator.core.clock import Clock, utc_now
from orchestrator.core.exceptions import ProbeError
from orchestrator.core.logger import get_logger
from orchestrator.probes.factory import ProbeFactory
from orchestrator.services.registry import ProviderRegistry

logger = get_logger(__name__)


class HealthChecker:
    """
    Probes providers and writes the outcome back to the registry.

    Features:
    - Type-specific probes with a bounded timeout
    - Configuration short-circuits that never touch the network
    - Bounded parallelism for batches
    - Cached last status (Redis when available, else the provider record)
    - Recent-history ring per provider
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        client: httpx.AsyncClient,
        cache: Optional[RedisCache] = None,
        clock: Clock = utc_now,
        timeout_cap_ms: int = 10000,
        concurrency: int = 8,
        history_size: int = 20,
    ):
        """
        Initialize health checker.

        Args:
            registry: Provider registry used for write-back
            client: Shared async HTTP client for probes
            cache: Optional Redis cache for last status
            clock: Returns the current naive UTC time
            timeout_cap_ms: Upper bound on any single probe
            concurrency: Maximum probes in flight per batch
            history_size: Results kept per provider
        """
        self.registry = registry
        self.client = client
        self.cache = cache
        self.clock = clock
        self.timeout_cap_ms = timeout_cap_ms
        self.concurrency = concurrency
        self._history: Dict[str, Deque[HealthCheckResult]] = defaultdict(
            lambda: deque(maxlen=history_size)
        )

    def probe_timeout_seconds(self, provider: ProviderRecord) -> float:
        return min(provider.timeout_ms, self.timeout_cap_ms) / 1000

    async def check_one(self, provider: ProviderRecord) -> HealthCheckResult:
        """
        Probe a single provider and persist the outcome.

        Never raises for probe failures; they become ``unhealthy``.

        Args:
            provider: Provider snapshot to probe

        Returns:
            Health check result
        """
        result = await self._probe(provider)

        stored = await self.registry.apply_health(result)
        if stored is not None and stored != result.status:
            result = result.model_copy(update={"status": stored})

        self._history[provider.id].append(result)
        if self.cache is not None:
            await self.cache.set(health_cache_key(provider.id), result.model_dump(mode="json"))

        log = logger.info if result.status == HealthStatus.HEALTHY else logger.warning
        log(
            "Provider health checked",
            provider_id=provider.id,
            provider=provider.name,
            status=result.status.value,
            response_time_ms=result.response_time_ms,
            error=result.error_message,
        )
        return result

    async def check_provider(self, provider_id: str) -> HealthCheckResult:
        """Fetch a provider by id and probe it."""
        return await self.check_one(await self.registry.get(provider_id))

    async def check_many(self, providers: Sequence[ProviderRecord]) -> List[HealthCheckResult]:
        """
        Probe providers concurrently.

        A failing or slow provider never blocks the others; results come back
        in input order.
        """
        if not providers:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(provider: ProviderRecord) -> HealthCheckResult:
            async with semaphore:
                return await self.check_one(provider)

        outcomes = await asyncio.gather(
            *(bounded(p) for p in providers),
            return_exceptions=True
        )

        results: List[HealthCheckResult] = []
        for provider, outcome in zip(providers, outcomes):
            if isinstance(outcome, BaseException):
                # Write-back failed; the probe verdict is unknown to the store
                logger.error(
                    "Health check failed",
                    provider_id=provider.id,
                    error=str(outcome),
                    exc_info=outcome,
                )
                outcome = HealthCheckResult(
                    provider_id=provider.id,
                    status=HealthStatus.UNHEALTHY,
                    error_message=str(outcome),
                    error_kind="error",
                    checked_at=self.clock(),
                )
            results.append(outcome)

        logger.info(
            "Batch health check finished",
            checked=len(results),
            healthy=sum(1 for r in results if r.status == HealthStatus.HEALTHY),
        )
        return results

    async def get_health_status(self, provider_id: str) -> HealthCheckResult:
        """
        Last known health of a provider without probing.

        The cached probe result is served only while it agrees with the
        status on the provider record; a toggle or maintenance change made
        after the probe makes the record win.

        Raises:
            NotFoundError: Unknown provider id
        """
        provider = await self.registry.get(provider_id)

        if self.cache is not None:
            cached = await self.cache.get(health_cache_key(provider_id))
            if cached:
                result = HealthCheckResult.model_validate(cached)
                if result.status == provider.health_status:
                    return result
                logger.debug(
                    "Cached health status is stale",
                    provider_id=provider_id,
                    cached=result.status.value,
                    stored=provider.health_status.value,
                )

        return HealthCheckResult(
            provider_id=provider.id,
            status=provider.health_status,
            response_time_ms=provider.last_response_time_ms,
            error_message=provider.last_health_error,
            checked_at=provider.last_health_check_at,
        )

    def get_history(self, provider_id: str) -> List[HealthCheckResult]:
        """Most recent results for a provider, oldest first."""
        return list(self._history.get(provider_id, ()))

    async def _probe(self, provider: ProviderRecord) -> HealthCheckResult:
        checked_at = self.clock()

        if not provider.enabled:
            return HealthCheckResult(
                provider_id=provider.id,
                status=HealthStatus.DISABLED,
                checked_at=checked_at,
            )
        if provider.health_status == HealthStatus.MAINTENANCE:
            return HealthCheckResult(
                provider_id=provider.id,
                status=HealthStatus.MAINTENANCE,
                checked_at=checked_at,
            )

        timeout = self.probe_timeout_seconds(provider)
        probe = ProbeFactory.create_probe(provider, self.client, timeout)

        missing = probe.missing_requirement()
        if missing:
            return HealthCheckResult(
                provider_id=provider.id,
                status=HealthStatus.UNHEALTHY,
                response_time_ms=0,
                error_message=missing,
                error_kind="config",
                checked_at=checked_at,
            )

        start = time.monotonic()
        status = HealthStatus.UNHEALTHY
        models: List[str] = []
        error_message = None
        error_kind = None
        try:
            models = await asyncio.wait_for(probe.probe(), timeout=timeout)
            status = HealthStatus.HEALTHY
        except asyncio.TimeoutError:
            error_message = f"Health check timed out after {int(timeout * 1000)}ms"
            error_kind = "transient"
        except ProbeError as e:
            error_message = e.message
            error_kind = e.error_kind
        except Exception as e:
            logger.error("Unexpected probe failure", provider_id=provider.id, error=str(e), exc_info=True)
            error_message = str(e) or e.__class__.__name__
            error_kind = "error"

        return HealthCheckResult(
            provider_id=provider.id,
            status=status,
            response_time_ms=int((time.monotonic() - start) * 1000),
            error_message=error_message,
            error_kind=error_kind,
            checked_at=checked_at,
            available_models=models,
        )


class HealthScheduler:
    """
    Background loop that re-probes each provider on its own interval.

    One tick loop picks the providers that are due; a provider checked
    recently is skipped until its ``health_check_interval_ms`` elapses.
    """

    def __init__(
        self,
        checker: HealthChecker,
        registry: ProviderRegistry,
        tick_seconds: float = 5.0,
        clock: Clock = utc_now,
    ):
        self.checker = checker
        self.registry = registry
        self.tick_seconds = tick_seconds
        self.clock = clock
        self._task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the tick loop."""
        if self.running:
            return
        logger.info("Starting health scheduler", tick_seconds=self.tick_seconds)
        self._task = asyncio.create_task(self._run(), name="health-scheduler")

    async def stop(self) -> None:
        """Cancel the tick loop and any pending re-checks."""
        tasks = list(self._pending)
        if self._task is not None:
            tasks.append(self._task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._task = None
        self._pending.clear()
        logger.info("Health scheduler stopped")

    async def due_providers(self) -> List[ProviderRecord]:
        """Enabled providers never checked or checked longer ago than their interval."""
        now = self.clock()
        providers = await self.registry.list(ProviderFilter(enabled_only=True))
        return [
            p for p in providers
            if p.health_status != HealthStatus.MAINTENANCE
            and (
                p.last_health_check_at is None
                or now - p.last_health_check_at >= timedelta(milliseconds=p.health_check_interval_ms)
            )
        ]

    async def run_once(self) -> List[HealthCheckResult]:
        """Probe every due provider once."""
        due = await self.due_providers()
        if not due:
            logger.debug("No providers due for health check")
            return []
        return await self.checker.check_many(due)

    def schedule_recheck(self, provider_id: str) -> asyncio.Task:
        """
        Re-probe a provider in the background.

        The task is tracked until it finishes; its result is written back by
        the checker and a failure is logged.
        """
        task = asyncio.create_task(self._recheck(provider_id), name=f"health-recheck:{provider_id}")
        self._pending.add(task)
        task.add_done_callback(self._on_recheck_done)
        return task

    async def _recheck(self, provider_id: str) -> HealthCheckResult:
        return await self.checker.check_provider(provider_id)

    def _on_recheck_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Scheduled health re-check failed",
                task=task.get_name(),
                error=str(error),
                exc_info=error,
            )

    async def _run(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Health scheduler tick failed: {str(e)}", exc_info=True)

            await asyncio.sleep(self.tick_seconds)
