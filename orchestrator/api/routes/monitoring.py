"""
Admin API routes for usage accounting, admission checks and analytics.
"""
from datetime import date, datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Body, Depends, Query, Response, status
from fastapi.responses import StreamingResponse

from orchestrator.api.dependencies import get_orchestrator, verify_admin_key
from orchestrator.api.schemas import (
    AnalyticsFilter,
    BudgetStatus,
    CostAlert,
    CostAlertLimits,
    ProviderMetrics,
    RateLimitStatus,
    Recommendation,
    UsageAnalytics,
    UsageFilter,
    UsageRecordCreate,
    UsageRecordResponse,
    naive_utc,
)
from orchestrator.core.exceptions import ValidationError
from orchestrator.core.logger import get_logger
from orchestrator.services.export import MEDIA_TYPES
from orchestrator.services.orchestrator import ProviderOrchestrator

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["monitoring"], dependencies=[Depends(verify_admin_key)])


# ============================================================================
# Usage Ledger
# ============================================================================

@router.post("/usage", response_model=UsageRecordResponse, status_code=status.HTTP_201_CREATED)
async def record_usage(
    record: UsageRecordCreate,
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Record one attempted completion call."""
    return await orchestrator.ledger.record_attempt(record)


@router.get("/usage", response_model=List[UsageRecordResponse])
async def list_usage(
    user_id: Optional[str] = Query(None),
    provider_id: Optional[str] = Query(None),
    success: Optional[bool] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """List usage records, newest first."""
    return await orchestrator.ledger.list_records(UsageFilter(
        user_id=user_id,
        provider_id=provider_id,
        success=success,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    ))


@router.get("/usage/export")
async def export_usage(
    format: Literal["csv", "json", "xlsx"] = Query("csv"),
    user_id: Optional[str] = Query(None),
    provider_id: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Download usage records as CSV, JSON or Excel."""
    content = await orchestrator.exporter.export(format, UsageFilter(
        user_id=user_id,
        provider_id=provider_id,
        start_date=start_date,
        end_date=end_date,
    ))
    return StreamingResponse(
        content,
        media_type=MEDIA_TYPES[format],
        headers={
            "Content-Disposition": f"attachment; filename=usage.{format}"
        }
    )


@router.post("/providers/{provider_id}/rate-limit", response_model=RateLimitStatus)
async def check_rate_limit(
    provider_id: str,
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Consume one request slot for a provider if its window has room."""
    allowed = await orchestrator.ledger.check_rate_limit(provider_id)
    return RateLimitStatus(provider_id=provider_id, allowed=allowed)


@router.post("/providers/{provider_id}/admit", status_code=status.HTTP_204_NO_CONTENT)
async def admit_request(
    provider_id: str,
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Admit one request: 402 when the daily budget is spent, 429 when the window is full."""
    provider = await orchestrator.registry.get(provider_id)
    await orchestrator.ledger.admit(provider)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/providers/{provider_id}/budget", response_model=BudgetStatus)
async def check_budget(
    provider_id: str,
    day: Optional[date] = Query(None, description="Defaults to today (UTC)"),
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Remaining daily budget for a provider."""
    day = day or orchestrator.clock().date()
    remaining = await orchestrator.ledger.check_budget(provider_id, day)
    return BudgetStatus(provider_id=provider_id, day=day, remaining_usd=remaining)


# ============================================================================
# Analytics
# ============================================================================

@router.get("/analytics", response_model=UsageAnalytics)
async def get_analytics(
    start_date: datetime = Query(...),
    end_date: datetime = Query(...),
    user_id: Optional[str] = Query(None),
    provider_id: Optional[str] = Query(None),
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Totals, breakdowns, daily usage and trends for a date range."""
    start_date, end_date = naive_utc(start_date), naive_utc(end_date)
    if end_date < start_date:
        raise ValidationError(["end_date: must not be before start_date"])
    filter = AnalyticsFilter(
        user_id=user_id,
        provider_id=provider_id,
        start_date=start_date,
        end_date=end_date,
    )
    return await orchestrator.analytics.get_analytics(filter)


@router.post("/analytics/alerts", response_model=List[CostAlert])
async def get_cost_alerts(
    limits: CostAlertLimits,
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Cost alerts against the supplied limits."""
    return await orchestrator.analytics.get_cost_alerts(limits)


@router.post("/analytics/recommendations", response_model=List[Recommendation])
async def get_recommendations(
    user_id: Optional[str] = Query(None),
    limits: Optional[CostAlertLimits] = Body(None),
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Advisory cost and efficiency recommendations."""
    return await orchestrator.analytics.get_recommendations(user_id=user_id, limits=limits)


@router.get("/analytics/providers", response_model=List[ProviderMetrics])
async def get_provider_metrics(orchestrator: ProviderOrchestrator = Depends(get_orchestrator)):
    """Lifetime request statistics per provider."""
    return await orchestrator.analytics.get_provider_metrics()
