"""
Admin API routes for provider management and health.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, Response, status
from fastapi.responses import JSONResponse

from orchestrator.api.dependencies import get_orchestrator, verify_admin_key
from orchestrator.api.schemas import (
    BatchStatus,
    HealthCheckResult,
    MaintenanceRequest,
    PriorityUpdate,
    ProviderFilter,
    ProviderResponse,
    ProviderType,
    ProviderUpdate,
    ReloadReport,
    SelectionConstraints,
    ToggleRequest,
)
from orchestrator.core.logger import get_logger
from orchestrator.services.orchestrator import ProviderOrchestrator

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["providers"], dependencies=[Depends(verify_admin_key)])


# ============================================================================
# Provider Management
# ============================================================================

@router.get("/providers", response_model=List[ProviderResponse])
async def list_providers(
    type: Optional[ProviderType] = Query(None, description="Only return providers of this type"),
    enabled_only: bool = Query(False, description="Only return enabled providers"),
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """List providers by priority."""
    providers = await orchestrator.registry.list(ProviderFilter(type=type, enabled_only=enabled_only))
    return [ProviderResponse.from_record(p) for p in providers]


@router.post("/providers", response_model=ProviderResponse, status_code=status.HTTP_201_CREATED)
async def create_provider(
    config: Dict[str, Any] = Body(...),
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Create a provider; the body's ``type`` selects the configuration variant."""
    record = await orchestrator.registry.create(config)
    return ProviderResponse.from_record(record)


@router.post("/providers/seed")
async def seed_providers(orchestrator: ProviderOrchestrator = Depends(get_orchestrator)):
    """Insert the default providers unless providers already exist."""
    count = await orchestrator.registry.seed_defaults()
    return {"count": count}


@router.post("/providers/health", response_model=List[HealthCheckResult])
async def check_all_providers(orchestrator: ProviderOrchestrator = Depends(get_orchestrator)):
    """Probe every enabled provider now."""
    providers = await orchestrator.registry.list(ProviderFilter(enabled_only=True))
    return await orchestrator.checker.check_many(providers)


@router.post("/providers/select", response_model=List[ProviderResponse])
async def preview_selection(
    constraints: Optional[SelectionConstraints] = Body(None),
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Show the current failover order without consuming any rate-limit slot."""
    candidates = await orchestrator.selector.select_candidates(constraints)
    return [ProviderResponse.from_record(p) for p in candidates]


@router.get("/providers/{provider_id}", response_model=ProviderResponse)
async def get_provider(
    provider_id: str,
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Get a specific provider."""
    return ProviderResponse.from_record(await orchestrator.registry.get(provider_id))


@router.patch("/providers/{provider_id}", response_model=ProviderResponse)
async def update_provider(
    provider_id: str,
    update: ProviderUpdate,
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Update a provider and schedule a health re-check."""
    record = await orchestrator.update_provider(provider_id, update.model_dump(exclude_unset=True))
    return ProviderResponse.from_record(record)


@router.delete("/providers/{provider_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_provider(
    provider_id: str,
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Delete a provider; its usage history is kept."""
    await orchestrator.registry.delete(provider_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/providers/{provider_id}/toggle", response_model=ProviderResponse)
async def toggle_provider(
    provider_id: str,
    request: ToggleRequest,
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Enable or disable a provider."""
    return ProviderResponse.from_record(await orchestrator.registry.toggle(provider_id, request.enabled))


@router.put("/providers/{provider_id}/priority", response_model=ProviderResponse)
async def set_provider_priority(
    provider_id: str,
    request: PriorityUpdate,
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Change a provider's priority."""
    return ProviderResponse.from_record(await orchestrator.registry.set_priority(provider_id, request.priority))


@router.post("/providers/{provider_id}/maintenance", response_model=ProviderResponse)
async def set_provider_maintenance(
    provider_id: str,
    request: MaintenanceRequest,
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Put a provider into maintenance or bring it back."""
    record = await orchestrator.registry.set_maintenance(provider_id, request.maintenance)
    return ProviderResponse.from_record(record)


@router.post("/providers/{provider_id}/models/refresh", response_model=ProviderResponse)
async def refresh_provider_models(
    provider_id: str,
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Replace a local provider's models with the ones it has installed."""
    return ProviderResponse.from_record(await orchestrator.refresh_local_models(provider_id))


# ============================================================================
# Health
# ============================================================================

@router.post("/providers/{provider_id}/health", response_model=HealthCheckResult)
async def check_provider_health(
    provider_id: str,
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Probe a provider now."""
    return await orchestrator.checker.check_provider(provider_id)


@router.get("/providers/{provider_id}/health", response_model=HealthCheckResult)
async def get_provider_health(
    provider_id: str,
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Last known health, without probing."""
    return await orchestrator.checker.get_health_status(provider_id)


@router.get("/providers/{provider_id}/health/history", response_model=List[HealthCheckResult])
async def get_provider_health_history(
    provider_id: str,
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Recent probe results, oldest first."""
    await orchestrator.registry.get(provider_id)
    return orchestrator.checker.get_history(provider_id)


# ============================================================================
# Configuration Reload
# ============================================================================

@router.post("/config/reload", response_model=ReloadReport)
async def reload_configuration(
    validate_only: bool = Query(False, description="Validate without probing"),
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator)
):
    """Re-validate and re-probe all providers; 207 when only some succeed."""
    report = await orchestrator.reload_configuration(validate_only=validate_only)
    status_code = status.HTTP_200_OK if report.status == BatchStatus.SUCCESS else status.HTTP_207_MULTI_STATUS
    return JSONResponse(status_code=status_code, content=report.model_dump(mode="json"))


@router.get("/diagnostics")
async def diagnostics(orchestrator: ProviderOrchestrator = Depends(get_orchestrator)):
    """Provider overview for troubleshooting; credentials are never included."""
    providers = await orchestrator.registry.list()
    return {
        "providers_count": len(providers),
        "enabled_count": sum(1 for p in providers if p.enabled),
        "scheduler_running": orchestrator.scheduler.running,
        "providers": [
            {
                "id": p.id,
                "name": p.name,
                "type": p.type.value,
                "enabled": p.enabled,
                "priority": p.priority,
                "health_status": p.health_status.value,
                "has_credential": p.has_credential,
                "endpoint": p.endpoint,
                "models": p.models,
            }
            for p in providers
        ],
    }
