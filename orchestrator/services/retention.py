"""
Usage retention service for periodic pruning of old usage records.
"""
import asyncio
from datetime import timedelta
from typing import Any, Dict, Optional

from orchestrator.core.logger import get_logger
from orchestrator.services.ledger import UsageLedger

logger = get_logger(__name__)


class UsageRetentionService:
    """Deletes usage records older than the retention period."""

    def __init__(
        self,
        ledger: UsageLedger,
        retention_days: int = 90,
        cleanup_interval_hours: float = 24,
    ):
        """
        Initialize retention service.

        Args:
            ledger: Usage ledger owning the records
            retention_days: Number of days to retain records (default: 90)
            cleanup_interval_hours: Hours between cleanup runs (default: 24)
        """
        self.ledger = ledger
        self.retention_days = retention_days
        self.cleanup_interval_hours = cleanup_interval_hours
        self._task: Optional[asyncio.Task] = None

    async def cleanup(self) -> Dict[str, Any]:
        """
        Delete records older than the retention period.

        Returns:
            Dictionary with cleanup statistics
        """
        deleted = await self.ledger.purge_older_than(self.retention_days)
        cutoff = self.ledger.clock() - timedelta(days=self.retention_days)
        return {
            "deleted_count": deleted,
            "cutoff_date": cutoff.isoformat(),
            "retention_days": self.retention_days,
        }

    async def run_periodic_cleanup(self) -> None:
        """Run cleanup periodically until cancelled."""
        logger.info(
            f"Starting usage retention service "
            f"(retention: {self.retention_days} days, "
            f"interval: {self.cleanup_interval_hours} hours)"
        )

        while True:
            try:
                await self.cleanup()
            except Exception as e:
                logger.error(f"Usage cleanup failed: {str(e)}", exc_info=True)

            await asyncio.sleep(self.cleanup_interval_hours * 3600)

    def start(self) -> None:
        """Start the periodic cleanup task."""
        if self._task is not None and not self._task.done():
            logger.warning("Usage retention service already running")
            return
        self._task = asyncio.create_task(self.run_periodic_cleanup(), name="usage-retention")

    async def stop(self) -> None:
        """Cancel the periodic cleanup task."""
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Usage retention service stopped")
