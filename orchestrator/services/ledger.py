"""
Usage ledger: attempt accounting plus rate and budget admission control.
"""
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orchestrator.api.schemas import ProviderRecord, UsageFilter, UsageRecordCreate, UsageRecordResponse
from orchestrator.core.clock import Clock, utc_now
from orchestrator.core.exceptions import BudgetExceeded, NotFoundError, RateLimitExceeded
from orchestrator.core.logger import get_logger
from orchestrator.models.provider import Provider
from orchestrator.models.usage import UsageRecord
from orchestrator.services.rate_limiter import RedisWindowRateLimiter, SlidingWindowRateLimiter
from orchestrator.services.registry import ProviderRegistry

logger = get_logger(__name__)

RateLimiter = Union[SlidingWindowRateLimiter, RedisWindowRateLimiter]


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Half-open [start, end) range covering one calendar day."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


class UsageLedger:
    """
    Records attempted calls and answers admission questions.

    Denials are plain results (``False`` or a non-positive remaining
    budget), never exceptions.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: ProviderRegistry,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Clock = utc_now,
    ):
        """
        Initialize ledger.

        Args:
            session_factory: Async session factory
            registry: Provider registry for limits and snapshots
            rate_limiter: Window limiter (in-process sliding window by default)
            clock: Returns the current naive UTC time
        """
        self.session_factory = session_factory
        self.registry = registry
        self.clock = clock
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(clock=clock)

    async def record_attempt(self, record: UsageRecordCreate) -> UsageRecordResponse:
        """
        Append one attempt and bump the provider's lifetime counters.

        Both writes share one transaction.

        Raises:
            NotFoundError: Provider unknown and no type snapshot supplied
        """
        async with self.session_factory() as session:
            provider = await session.get(Provider, record.provider_id)
            if provider is None and record.provider_type is None:
                raise NotFoundError(record.provider_id)

            row = UsageRecord(
                user_id=record.user_id,
                provider_id=record.provider_id,
                provider_name=provider.name if provider else record.provider_name,
                provider_type=provider.type if provider else record.provider_type.value,
                model=record.model,
                tokens_in=record.tokens_in,
                tokens_out=record.tokens_out,
                cost_usd=record.cost_usd,
                latency_ms=record.latency_ms,
                success=record.success,
                error_kind=record.error_kind,
                error_message=record.error_message,
                created_at=record.timestamp or self.clock(),
            )
            session.add(row)

            if provider is not None:
                await session.execute(
                    update(Provider)
                    .where(Provider.id == record.provider_id)
                    .values(
                        total_requests=Provider.total_requests + 1,
                        total_cost_usd=Provider.total_cost_usd + record.cost_usd,
                    )
                )
            await session.commit()
            stored = UsageRecordResponse.model_validate(row)

        logger.debug(
            "Usage recorded",
            provider_id=record.provider_id,
            model=record.model,
            success=record.success,
            cost_usd=record.cost_usd,
        )
        return stored

    async def check_rate_limit(self, provider_id: str, limit: Optional[int] = None) -> bool:
        """
        Consume one request slot in the provider's 60-second window.

        Args:
            provider_id: Provider id
            limit: Requests per minute; read from the registry when omitted

        Returns:
            True if the request is admitted
        """
        if limit is None:
            limit = (await self.registry.get(provider_id)).max_requests_per_minute
        allowed = await self.rate_limiter.acquire(provider_id, limit)
        if not allowed:
            logger.info("Rate limit reached", provider_id=provider_id, limit=limit)
        return allowed

    async def rate_limit_remaining(self, provider_id: str, limit: Optional[int] = None) -> int:
        """Slots left in the current window; does not consume one."""
        if limit is None:
            limit = (await self.registry.get(provider_id)).max_requests_per_minute
        return await self.rate_limiter.remaining(provider_id, limit)

    async def check_budget(
        self,
        provider_id: str,
        day: Optional[date] = None,
        limit: Optional[float] = None,
    ) -> Optional[float]:
        """
        Remaining daily budget for a provider.

        A zero cap marks a provider without a cost budget; admission never
        denies it, so there is nothing to report.

        Args:
            provider_id: Provider id
            day: Calendar day (today by default)
            limit: Daily cap; read from the registry when omitted

        Returns:
            ``max_cost_per_day_usd - spent``, negative once overspent;
            None for an uncapped provider
        """
        if limit is None:
            limit = (await self.registry.get(provider_id)).max_cost_per_day_usd
        if limit <= 0:
            return None
        spent = (await self.daily_spend(day or self.clock().date(), provider_id)).get(provider_id, 0.0)
        return limit - spent

    async def admit(self, provider: ProviderRecord) -> None:
        """
        Check budget, then consume a rate slot, raising on denial.

        Raises:
            BudgetExceeded: Daily cap spent (a zero cap never denies)
            RateLimitExceeded: Request window full
        """
        remaining = await self.check_budget(provider.id, limit=provider.max_cost_per_day_usd)
        if remaining is not None and remaining <= 0:
            raise BudgetExceeded(provider.id, remaining)
        if not await self.check_rate_limit(provider.id, provider.max_requests_per_minute):
            raise RateLimitExceeded(provider.id, provider.max_requests_per_minute)

    async def daily_spend(self, day: date, provider_id: Optional[str] = None) -> Dict[str, float]:
        """Cost recorded per provider on one day."""
        start, end = day_bounds(day)
        query = (
            select(UsageRecord.provider_id, func.coalesce(func.sum(UsageRecord.cost_usd), 0.0))
            .where(UsageRecord.created_at >= start, UsageRecord.created_at < end)
            .group_by(UsageRecord.provider_id)
        )
        if provider_id is not None:
            query = query.where(UsageRecord.provider_id == provider_id)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return {pid: float(total) for pid, total in result.all()}

    async def total_cost(
        self,
        start: datetime,
        end: datetime,
        user_id: Optional[str] = None,
        provider_id: Optional[str] = None,
    ) -> float:
        """Sum of cost over ``[start, end)``."""
        query = select(func.coalesce(func.sum(UsageRecord.cost_usd), 0.0)).where(
            UsageRecord.created_at >= start,
            UsageRecord.created_at < end,
        )
        if user_id is not None:
            query = query.where(UsageRecord.user_id == user_id)
        if provider_id is not None:
            query = query.where(UsageRecord.provider_id == provider_id)

        async with self.session_factory() as session:
            return float((await session.execute(query)).scalar_one())

    async def provider_stats(self) -> Dict[str, Dict[str, Any]]:
        """Lifetime request counts, latency, cost and last activity per provider."""
        query = select(
            UsageRecord.provider_id,
            func.count(UsageRecord.id),
            func.sum(case((UsageRecord.success.is_(True), 1), else_=0)),
            func.avg(UsageRecord.latency_ms),
            func.coalesce(func.sum(UsageRecord.cost_usd), 0.0),
            func.max(UsageRecord.created_at),
        ).group_by(UsageRecord.provider_id)

        async with self.session_factory() as session:
            rows = (await session.execute(query)).all()

        return {
            provider_id: {
                "total_requests": int(total),
                "successful_requests": int(successful or 0),
                "average_response_time_ms": float(avg_latency or 0.0),
                "total_cost_usd": float(cost),
                "last_request_at": last,
            }
            for provider_id, total, successful, avg_latency, cost, last in rows
        }

    async def list_records(self, filter: Optional[UsageFilter] = None) -> List[UsageRecordResponse]:
        """
        List usage records, newest first.

        Args:
            filter: Optional user, provider, outcome and date filters

        Returns:
            Matching records
        """
        filter = filter or UsageFilter()
        query = select(UsageRecord)
        if filter.user_id is not None:
            query = query.where(UsageRecord.user_id == filter.user_id)
        if filter.provider_id is not None:
            query = query.where(UsageRecord.provider_id == filter.provider_id)
        if filter.success is not None:
            query = query.where(UsageRecord.success.is_(filter.success))
        if filter.start_date is not None:
            query = query.where(UsageRecord.created_at >= filter.start_date)
        if filter.end_date is not None:
            query = query.where(UsageRecord.created_at <= filter.end_date)
        query = query.order_by(UsageRecord.created_at.desc()).offset(filter.offset)
        if filter.limit is not None:
            query = query.limit(filter.limit)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [UsageRecordResponse.model_validate(r) for r in result.scalars().all()]

    async def purge_older_than(self, days: int) -> int:
        """
        Delete records older than a retention period.

        Returns:
            Number of deleted records
        """
        cutoff = self.clock() - timedelta(days=days)
        async with self.session_factory() as session:
            result = await session.execute(delete(UsageRecord).where(UsageRecord.created_at < cutoff))
            await session.commit()
        logger.info("Old usage records purged", deleted=result.rowcount, cutoff=cutoff.isoformat())
        return result.rowcount
