"""
FastAPI dependencies for dependency injection.
"""
import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from orchestrator.core.config import Settings
from orchestrator.core.logger import get_logger
from orchestrator.services.orchestrator import ProviderOrchestrator

logger = get_logger(__name__)


# ============================================================================
# Application State Dependencies
# ============================================================================

def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return request.app.state.settings


def get_orchestrator(request: Request) -> ProviderOrchestrator:
    """Orchestrator composed during application startup."""
    return request.app.state.orchestrator


# ============================================================================
# Admin Authentication Dependency
# ============================================================================

async def verify_admin_key(
    authorization: Optional[str] = Header(None),
    x_admin_key: Optional[str] = Header(None),
    settings: Settings = Depends(get_app_settings),
) -> str:
    """
    Verify admin API key for management endpoints.

    Args:
        authorization: Authorization header value
        x_admin_key: X-Admin-Key header value
        settings: Application settings

    Returns:
        Validated admin key

    Raises:
        HTTPException: If admin key is missing or invalid
    """
    admin_key = None

    # Try Authorization header first
    if authorization:
        parts = authorization.split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            admin_key = parts[1]

    # Fall back to X-Admin-Key header
    if not admin_key and x_admin_key:
        admin_key = x_admin_key

    if not admin_key:
        logger.warning("Admin key missing in request")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin key is required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    expected = settings.admin_key.get_secret_value()
    if not secrets.compare_digest(admin_key.encode(), expected.encode()):
        logger.warning("Invalid admin key attempted")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin key",
        )

    return admin_key
