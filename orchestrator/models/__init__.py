"""
Database models for providers and usage records.
"""
from orchestrator.models.provider import Provider
from orchestrator.models.usage import UsageRecord

__all__ = [
    "Provider",
    "UsageRecord",
]
