"""
Usage record database model.
"""
import uuid
from sqlalchemy import (
    Column, Integer, String, Text, Float, Boolean, DateTime, Index
)

from orchestrator.core.database import Base


class UsageRecord(Base):
    """
    One attempted completion call.

    Append-only. ``provider_id`` is not a foreign key: a
    deleted provider leaves its history behind, identified by the name and
    type snapshots taken at write time.
    """
    
    __tablename__ = "usage_records"
    
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(100), index=True)
    provider_id = Column(String(36), nullable=False)
    provider_name = Column(String(100))
    provider_type = Column(String(20), nullable=False)
    model = Column(String(100), nullable=False)
    
    tokens_in = Column(Integer, nullable=False, default=0)
    tokens_out = Column(Integer, nullable=False, default=0)
    cost_usd = Column(Float, nullable=False, default=0.0)
    latency_ms = Column(Integer, nullable=False, default=0)
    
    success = Column(Boolean, nullable=False, index=True)
    error_kind = Column(String(50))
    error_message = Column(Text)
    
    created_at = Column(DateTime, nullable=False, index=True)
    
    __table_args__ = (
        Index('idx_usage_provider_created', 'provider_id', 'created_at'),
        Index('idx_usage_user_created', 'user_id', 'created_at'),
    )
