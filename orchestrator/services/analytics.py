"""
Usage analytics: totals, breakdowns, trends, cost alerts and recommendations.
"""
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from orchestrator.api.schemas import (
    AlertKind,
    AlertScope,
    AlertSeverity,
    AnalyticsFilter,
    BreakdownEntry,
    CostAlert,
    CostAlertLimits,
    DailyUsage,
    ProviderMetrics,
    Recommendation,
    RecommendationPriority,
    Trend,
    UsageAnalytics,
    UsageFilter,
    UsageRecordResponse,
)
from orchestrator.core.clock import Clock, utc_now
from orchestrator.core.logger import get_logger
from orchestrator.services.ledger import UsageLedger
from orchestrator.services.registry import ProviderRegistry

logger = get_logger(__name__)


@dataclass(frozen=True)
class AnalyticsThresholds:
    """Tunable limits for trends, alerts and recommendations."""

    trend_change_ratio: float = 0.10
    alert_warning_ratio: float = 0.8
    spike_multiplier: float = 3.0
    cost_dominance_ratio: float = 0.6
    min_success_rate: float = 0.95
    week_over_week_increase: float = 0.5
    max_cost_per_token: float = 0.001
    max_recommendations: int = 5
    recommendation_period_days: int = 14

    @classmethod
    def from_settings(cls, settings) -> "AnalyticsThresholds":
        return cls(
            alert_warning_ratio=settings.alert_warning_ratio,
            spike_multiplier=settings.alert_spike_multiplier,
            cost_dominance_ratio=settings.recommend_cost_dominance_ratio,
            min_success_rate=settings.recommend_min_success_rate,
            week_over_week_increase=settings.recommend_week_over_week_increase,
            max_cost_per_token=settings.recommend_max_cost_per_token,
        )


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def classify_trend(series: Sequence[float], change_ratio: float = 0.10) -> Trend:
    """
    Classify a day-bucketed series.

    Compares the mean of the most recent 7 buckets with the mean of the 7
    before them. Shorter series compare their two most recent halves.

    Args:
        series: Values ordered oldest to newest
        change_ratio: Relative change that counts as a trend

    Returns:
        increasing, decreasing or stable
    """
    if len(series) < 2:
        return Trend.STABLE

    window = min(7, len(series) // 2)
    recent = _mean(series[-window:])
    earlier = _mean(series[-2 * window:-window])

    if earlier == 0:
        return Trend.INCREASING if recent > 0 else Trend.STABLE

    change = (recent - earlier) / earlier
    if change >= change_ratio:
        return Trend.INCREASING
    if change <= -change_ratio:
        return Trend.DECREASING
    return Trend.STABLE


class _Accumulator:
    __slots__ = ("requests", "successful", "cost", "tokens", "latency")

    def __init__(self):
        self.requests = 0
        self.successful = 0
        self.cost = 0.0
        self.tokens = 0
        self.latency = 0

    def add(self, record: UsageRecordResponse) -> None:
        self.requests += 1
        self.successful += 1 if record.success else 0
        self.cost += record.cost_usd
        self.tokens += record.tokens_in + record.tokens_out
        self.latency += record.latency_ms

    def entry(self) -> BreakdownEntry:
        return BreakdownEntry(
            requests=self.requests,
            successful_requests=self.successful,
            cost_usd=self.cost,
            tokens=self.tokens,
            average_response_time_ms=self.latency / self.requests if self.requests else 0.0,
            success_rate=self.successful / self.requests if self.requests else 0.0,
        )


def _days(start: date, end: date) -> Iterable[date]:
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


class AnalyticsAggregator:
    """Read-only views over the usage ledger."""

    def __init__(
        self,
        ledger: UsageLedger,
        registry: ProviderRegistry,
        clock: Clock = utc_now,
        thresholds: Optional[AnalyticsThresholds] = None,
    ):
        self.ledger = ledger
        self.registry = registry
        self.clock = clock
        self.thresholds = thresholds or AnalyticsThresholds()

    async def get_analytics(self, filter: AnalyticsFilter) -> UsageAnalytics:
        """
        Aggregate usage in a date range.

        Args:
            filter: Range plus optional user / provider narrowing

        Returns:
            Totals, per-provider and per-model breakdowns, daily buckets and trends
        """
        records = await self.ledger.list_records(UsageFilter(
            user_id=filter.user_id,
            provider_id=filter.provider_id,
            start_date=filter.start_date,
            end_date=filter.end_date,
        ))

        totals = _Accumulator()
        by_provider: Dict[str, _Accumulator] = defaultdict(_Accumulator)
        by_model: Dict[str, _Accumulator] = defaultdict(_Accumulator)
        daily: Dict[date, DailyUsage] = {
            day: DailyUsage(date=day)
            for day in _days(filter.start_date.date(), filter.end_date.date())
        }

        for record in records:
            totals.add(record)
            by_provider[record.provider_id].add(record)
            by_model[record.model].add(record)
            bucket = daily[record.created_at.date()]
            bucket.requests += 1
            bucket.cost_usd += record.cost_usd
            bucket.tokens += record.tokens_in + record.tokens_out

        daily_usage = [daily[day] for day in sorted(daily)]
        ratio = self.thresholds.trend_change_ratio
        return UsageAnalytics(
            total_requests=totals.requests,
            successful_requests=totals.successful,
            failed_requests=totals.requests - totals.successful,
            total_cost_usd=totals.cost,
            total_tokens=totals.tokens,
            average_response_time_ms=totals.latency / totals.requests if totals.requests else 0.0,
            provider_breakdown={key: acc.entry() for key, acc in by_provider.items()},
            model_breakdown={key: acc.entry() for key, acc in by_model.items()},
            daily_usage=daily_usage,
            cost_trend=classify_trend([d.cost_usd for d in daily_usage], ratio),
            request_trend=classify_trend([float(d.requests) for d in daily_usage], ratio),
        )

    async def get_cost_alerts(self, limits: CostAlertLimits) -> List[CostAlert]:
        """
        Compare current spend against operator limits.

        ``warning`` fires at the warning ratio of a limit, ``critical`` once
        the limit is reached. Absent limits produce no alert for their scope.
        An unusual spike against the previous week's daily average is always
        checked.
        """
        now = self.clock()
        today_start = datetime.combine(now.date(), time.min)
        tomorrow = today_start + timedelta(days=1)
        month_start = today_start.replace(day=1)
        user_id = limits.user_id

        alerts: List[CostAlert] = []
        today_cost = await self.ledger.total_cost(today_start, tomorrow, user_id=user_id)

        if limits.daily_limit:
            alert = self._limit_alert(
                AlertKind.DAILY_LIMIT, AlertScope.GLOBAL, "Daily cost", today_cost, limits.daily_limit
            )
            if alert:
                alerts.append(alert)

        if limits.monthly_limit:
            month_cost = await self.ledger.total_cost(month_start, tomorrow, user_id=user_id)
            alert = self._limit_alert(
                AlertKind.MONTHLY_LIMIT, AlertScope.GLOBAL, "Monthly cost", month_cost, limits.monthly_limit
            )
            if alert:
                alerts.append(alert)

        if limits.provider_limits:
            names = {p.id: p.name for p in await self.registry.list()}
            for provider_id, limit in limits.provider_limits.items():
                provider_cost = await self.ledger.total_cost(
                    today_start, tomorrow, user_id=user_id, provider_id=provider_id
                )
                alert = self._limit_alert(
                    AlertKind.PROVIDER_LIMIT,
                    AlertScope.PROVIDER,
                    f"{names.get(provider_id, provider_id)} daily cost",
                    provider_cost,
                    limit,
                    provider_id=provider_id,
                )
                if alert:
                    alerts.append(alert)

        week_cost = await self.ledger.total_cost(today_start - timedelta(days=7), today_start, user_id=user_id)
        weekly_average = week_cost / 7
        spike_threshold = weekly_average * self.thresholds.spike_multiplier
        if weekly_average > 0 and today_cost > spike_threshold:
            alerts.append(CostAlert(
                severity=AlertSeverity.WARNING,
                scope=AlertScope.GLOBAL,
                kind=AlertKind.UNUSUAL_SPIKE,
                message=f"Today's cost is {today_cost / weekly_average:.1f}x higher than the recent daily average",
                threshold_usd=spike_threshold,
                current_usd=today_cost,
            ))

        if alerts:
            logger.info("Cost alerts raised", count=len(alerts), kinds=[a.kind.value for a in alerts])
        return alerts

    def _limit_alert(
        self,
        kind: AlertKind,
        scope: AlertScope,
        label: str,
        current: float,
        limit: float,
        provider_id: Optional[str] = None,
    ) -> Optional[CostAlert]:
        if current < limit * self.thresholds.alert_warning_ratio:
            return None
        return CostAlert(
            severity=AlertSeverity.CRITICAL if current >= limit else AlertSeverity.WARNING,
            scope=scope,
            kind=kind,
            message=f"{label} is {current / limit * 100:.1f}% of limit",
            threshold_usd=limit,
            current_usd=current,
            provider_id=provider_id,
        )

    async def get_recommendations(
        self,
        user_id: Optional[str] = None,
        limits: Optional[CostAlertLimits] = None,
    ) -> List[Recommendation]:
        """
        Advisory optimization hints over the recent period.

        Returns:
            At most ``max_recommendations`` items, highest priority first
        """
        t = self.thresholds
        now = self.clock()
        start = datetime.combine(now.date() - timedelta(days=t.recommendation_period_days - 1), time.min)
        analytics = await self.get_analytics(AnalyticsFilter(user_id=user_id, start_date=start, end_date=now))

        recommendations: List[Recommendation] = []
        total_cost = analytics.total_cost_usd

        if total_cost > 0 and analytics.provider_breakdown:
            provider_id, top = max(analytics.provider_breakdown.items(), key=lambda item: item[1].cost_usd)
            if top.cost_usd > total_cost * t.cost_dominance_ratio:
                recommendations.append(Recommendation(
                    priority=RecommendationPriority.HIGH,
                    category="provider_optimization",
                    title="High-cost provider dominance",
                    description=(
                        f"Provider {provider_id} accounts for {top.cost_usd / total_cost * 100:.1f}% of costs. "
                        "Consider using lower-cost alternatives for non-critical requests."
                    ),
                    potential_savings_usd=top.cost_usd * 0.3,
                ))

        if analytics.total_requests > 0:
            success_rate = analytics.successful_requests / analytics.total_requests
            if success_rate < t.min_success_rate:
                recommendations.append(Recommendation(
                    priority=RecommendationPriority.HIGH,
                    category="efficiency",
                    title="Low success rate detected",
                    description=(
                        f"Current success rate is {success_rate * 100:.1f}%. "
                        "Review error patterns and provider health."
                    ),
                    potential_savings_usd=total_cost * (1 - success_rate),
                ))

        daily_costs = [d.cost_usd for d in analytics.daily_usage]
        recent, earlier = daily_costs[-7:], daily_costs[-14:-7]
        if recent and earlier:
            recent_avg, earlier_avg = _mean(recent), _mean(earlier)
            if earlier_avg > 0 and recent_avg > earlier_avg * (1 + t.week_over_week_increase):
                recommendations.append(Recommendation(
                    priority=RecommendationPriority.MEDIUM,
                    category="usage_pattern",
                    title="Increasing cost trend",
                    description=(
                        f"Daily costs have increased by {(recent_avg - earlier_avg) / earlier_avg * 100:.1f}% "
                        "over the past week. Consider tighter daily budgets."
                    ),
                ))

        if analytics.total_tokens > 0:
            cost_per_token = total_cost / analytics.total_tokens
            if cost_per_token > t.max_cost_per_token:
                recommendations.append(Recommendation(
                    priority=RecommendationPriority.MEDIUM,
                    category="efficiency",
                    title="High cost per token",
                    description=(
                        f"Current cost per token is ${cost_per_token:.6f}. "
                        "Consider more efficient models or shorter prompts."
                    ),
                ))

        if limits is not None:
            for alert in await self.get_cost_alerts(limits):
                if alert.severity == AlertSeverity.CRITICAL:
                    recommendations.append(Recommendation(
                        priority=RecommendationPriority.CRITICAL,
                        category="cost_reduction",
                        title="Budget limit exceeded",
                        description=f"{alert.message}. Immediate action required to control costs.",
                    ))

        recommendations.sort(key=lambda r: r.priority.rank, reverse=True)
        return recommendations[:t.max_recommendations]

    async def get_provider_metrics(self) -> List[ProviderMetrics]:
        """Lifetime request statistics for every registered provider."""
        stats = await self.ledger.provider_stats()
        metrics = []
        for provider in await self.registry.list():
            row = stats.get(provider.id, {})
            total = row.get("total_requests", 0)
            successful = row.get("successful_requests", 0)
            metrics.append(ProviderMetrics(
                provider_id=provider.id,
                provider_name=provider.name,
                total_requests=total,
                successful_requests=successful,
                failed_requests=total - successful,
                average_response_time_ms=row.get("average_response_time_ms", 0.0),
                total_cost_usd=row.get("total_cost_usd", 0.0),
                last_request_at=row.get("last_request_at"),
            ))
        return metrics
