"""
Provider database model.
"""
import uuid
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, Float, JSON,
    DateTime, Index
)

from orchestrator.core.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class Provider(Base):
    """Configured completion backend."""
    
    __tablename__ = "providers"
    
    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(100), unique=True, nullable=False, index=True)
    type = Column(String(20), nullable=False, index=True)  # openai, anthropic, google, mistral, ollama, groq, perplexity
    enabled = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=1)  # Lower = preferred
    models = Column(JSON, nullable=False, default=list)
    credential = Column(Text)  # Never logged or returned in cleartext
    endpoint = Column(String(255))
    
    max_requests_per_minute = Column(Integer, nullable=False, default=60)
    max_cost_per_day_usd = Column(Float, nullable=False, default=10.0)
    timeout_ms = Column(Integer, nullable=False, default=30000)
    retry_attempts = Column(Integer, nullable=False, default=3)
    health_check_interval_ms = Column(Integer, nullable=False, default=300000)
    
    health_status = Column(String(20), nullable=False, default="unknown", index=True)
    last_health_check_at = Column(DateTime)
    last_health_error = Column(Text)
    last_response_time_ms = Column(Integer)
    
    # Lifetime counters
    total_requests = Column(Integer, nullable=False, default=0)
    total_cost_usd = Column(Float, nullable=False, default=0.0)
    
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    __table_args__ = (
        Index('idx_provider_enabled_priority', 'enabled', 'priority'),
    )
