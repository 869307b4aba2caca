"""
Request/response and domain schemas using Pydantic models.
"""
from datetime import date, datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union
from enum import Enum

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    TypeAdapter,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)


# ============================================================================
# Enums
# ============================================================================

class ProviderType(str, Enum):
    """Supported backend families."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    MISTRAL = "mistral"
    OLLAMA = "ollama"
    GROQ = "groq"
    PERPLEXITY = "perplexity"


PROVIDER_TYPES = [t.value for t in ProviderType]
LOCAL_PROVIDER_TYPES = {ProviderType.OLLAMA.value}


class HealthStatus(str, Enum):
    """Last-known availability classification of a provider."""
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DISABLED = "disabled"
    MAINTENANCE = "maintenance"


INELIGIBLE_STATUSES = {HealthStatus.UNHEALTHY, HealthStatus.DISABLED, HealthStatus.MAINTENANCE}


class Trend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class AlertSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class AlertScope(str, Enum):
    GLOBAL = "global"
    PROVIDER = "provider"


class AlertKind(str, Enum):
    DAILY_LIMIT = "daily_limit"
    MONTHLY_LIMIT = "monthly_limit"
    PROVIDER_LIMIT = "provider_limit"
    UNUSUAL_SPIKE = "unusual_spike"


class RecommendationPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"critical": 4, "high": 3, "medium": 2, "low": 1}[self.value]


class BatchStatus(str, Enum):
    """Outcome of an operation applied to many providers."""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


class ReloadOutcome(str, Enum):
    OK = "ok"
    INVALID = "invalid"
    ERROR = "error"


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are taken as UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# ============================================================================
# Provider Configuration (discriminated by type)
# ============================================================================

class ProviderSettingsBase(BaseModel):
    """Fields shared by every provider type."""
    model_config = ConfigDict(extra="ignore")

    name: str
    enabled: bool = True
    priority: int = Field(default=1, ge=1, le=100)
    models: List[str] = Field(min_length=1)
    max_requests_per_minute: int = Field(default=60, ge=1)
    max_cost_per_day_usd: float = Field(default=10.0, ge=0)
    timeout_ms: int = Field(default=30000, ge=1000)
    retry_attempts: int = Field(default=3, ge=0, le=10)
    health_check_interval_ms: int = Field(default=300000, ge=10000)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("name must not be empty")
        return v.strip()


class KeyedProviderSettings(ProviderSettingsBase):
    """Cloud-hosted provider authenticated with an API key."""
    model_config = ConfigDict(extra="forbid")

    type: Literal["openai", "anthropic", "google", "mistral", "groq", "perplexity"]
    credential: SecretStr
    endpoint: Optional[str] = None  # overrides the default API base URL

    @field_validator("credential")
    @classmethod
    def validate_credential(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value().strip():
            raise ValueError("credential is required for key-based providers")
        return v


class LocalProviderSettings(ProviderSettingsBase):
    """Locally-hosted provider reached over the network."""
    model_config = ConfigDict(extra="forbid")

    type: Literal["ollama"]
    endpoint: str
    credential: Optional[SecretStr] = None

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("endpoint must be an http(s) URL")
        return v


ProviderSettings = Annotated[
    Union[KeyedProviderSettings, LocalProviderSettings],
    Field(discriminator="type")
]

_provider_settings_adapter: TypeAdapter = TypeAdapter(ProviderSettings)


def _describe_error(error: Dict[str, Any], skip_tag: bool) -> str:
    loc = list(error.get("loc", ()))
    if skip_tag and loc:
        loc = loc[1:]
    field = ".".join(str(part) for part in loc) or "config"
    if error.get("type") == "missing":
        return f"{field}: is required"
    message = str(error.get("msg", "invalid value")).removeprefix("Value error, ")
    return f"{field}: {message}"


def provider_config_errors(data: Mapping[str, Any]) -> List[str]:
    """
    Validate a provider configuration and collect every violated rule.

    Args:
        data: Raw configuration mapping

    Returns:
        List of violation messages, empty when the configuration is valid
    """
    errors: List[str] = []
    payload = dict(data)
    known_type = payload.get("type") in PROVIDER_TYPES

    if not known_type:
        # Discriminated validation stops at the tag, so check shared fields directly
        errors.append(f"type: must be one of {', '.join(PROVIDER_TYPES)}")

    try:
        if known_type:
            _provider_settings_adapter.validate_python(payload)
        else:
            ProviderSettingsBase.model_validate(payload)
    except PydanticValidationError as exc:
        errors.extend(_describe_error(err, skip_tag=known_type) for err in exc.errors())

    return errors


def parse_provider_settings(data: Mapping[str, Any]) -> Union[KeyedProviderSettings, LocalProviderSettings]:
    """Parse an already-validated configuration into its typed variant."""
    return _provider_settings_adapter.validate_python(dict(data))


class ProviderUpdate(BaseModel):
    """Partial provider update; merged onto the stored config and re-validated."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    enabled: Optional[bool] = None
    priority: Optional[int] = None
    models: Optional[List[str]] = None
    credential: Optional[SecretStr] = None
    endpoint: Optional[str] = None
    max_requests_per_minute: Optional[int] = None
    max_cost_per_day_usd: Optional[float] = None
    timeout_ms: Optional[int] = None
    retry_attempts: Optional[int] = None
    health_check_interval_ms: Optional[int] = None


class ProviderFilter(BaseModel):
    type: Optional[ProviderType] = None
    enabled_only: bool = False


class PriorityUpdate(BaseModel):
    priority: int


class ToggleRequest(BaseModel):
    enabled: bool


class MaintenanceRequest(BaseModel):
    maintenance: bool


# ============================================================================
# Provider Records
# ============================================================================

class ProviderRecord(BaseModel):
    """Snapshot of a stored provider handed to callers and executors."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: ProviderType
    enabled: bool
    priority: int
    models: List[str]
    credential: Optional[SecretStr] = None
    endpoint: Optional[str] = None
    max_requests_per_minute: int
    max_cost_per_day_usd: float
    timeout_ms: int
    retry_attempts: int
    health_check_interval_ms: int
    health_status: HealthStatus
    last_health_check_at: Optional[datetime] = None
    last_health_error: Optional[str] = None
    last_response_time_ms: Optional[int] = None
    total_requests: int = 0
    total_cost_usd: float = 0.0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_local(self) -> bool:
        return self.type.value in LOCAL_PROVIDER_TYPES

    @property
    def has_credential(self) -> bool:
        return self.credential is not None and bool(self.credential.get_secret_value())

    def config_dict(self) -> Dict[str, Any]:
        """Configuration fields as a plain mapping (credential in cleartext)."""
        return {
            "name": self.name,
            "type": self.type.value,
            "enabled": self.enabled,
            "priority": self.priority,
            "models": list(self.models),
            "credential": self.credential.get_secret_value() if self.credential else None,
            "endpoint": self.endpoint,
            "max_requests_per_minute": self.max_requests_per_minute,
            "max_cost_per_day_usd": self.max_cost_per_day_usd,
            "timeout_ms": self.timeout_ms,
            "retry_attempts": self.retry_attempts,
            "health_check_interval_ms": self.health_check_interval_ms,
        }


CREDENTIAL_PLACEHOLDER = "********"


class ProviderResponse(BaseModel):
    """Provider as exposed on diagnostic surfaces; the credential is masked."""

    id: str
    name: str
    type: ProviderType
    enabled: bool
    priority: int
    models: List[str]
    credential: Optional[str] = None
    has_credential: bool
    endpoint: Optional[str] = None
    max_requests_per_minute: int
    max_cost_per_day_usd: float
    timeout_ms: int
    retry_attempts: int
    health_check_interval_ms: int
    health_status: HealthStatus
    last_health_check_at: Optional[datetime] = None
    last_health_error: Optional[str] = None
    total_requests: int
    total_cost_usd: float

    @classmethod
    def from_record(cls, record: ProviderRecord) -> "ProviderResponse":
        data = record.model_dump(exclude={"credential", "created_at", "updated_at", "last_response_time_ms"})
        return cls(
            **data,
            credential=CREDENTIAL_PLACEHOLDER if record.has_credential else None,
            has_credential=record.has_credential,
        )


class SelectionConstraints(BaseModel):
    """Optional narrowing of the candidate list."""
    model_config = ConfigDict(protected_namespaces=())

    model: Optional[str] = None
    provider_types: Optional[List[ProviderType]] = None
    exclude_ids: List[str] = Field(default_factory=list)
    preferred_provider_id: Optional[str] = None


# ============================================================================
# Health Schemas
# ============================================================================

class HealthCheckResult(BaseModel):
    """Outcome of one probe (or the cached last outcome)."""

    provider_id: str
    status: HealthStatus
    response_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    error_kind: Optional[str] = None  # auth, transient, config
    checked_at: Optional[datetime] = None
    available_models: List[str] = Field(default_factory=list)


# ============================================================================
# Usage Ledger Schemas
# ============================================================================

class UsageRecordCreate(BaseModel):
    """One attempted call reported by the completion executor."""
    model_config = ConfigDict(protected_namespaces=())

    provider_id: str
    model: str
    user_id: Optional[str] = None
    tokens_in: int = Field(default=0, ge=0)
    tokens_out: int = Field(default=0, ge=0)
    cost_usd: float = Field(default=0.0, ge=0)
    latency_ms: int = Field(default=0, ge=0)
    success: bool
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: Optional[datetime] = None
    # Snapshots, only needed when the provider record no longer exists
    provider_name: Optional[str] = None
    provider_type: Optional[ProviderType] = None

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: Optional[datetime]) -> Optional[datetime]:
        return naive_utc(v)


class UsageRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    id: str
    user_id: Optional[str] = None
    provider_id: str
    provider_name: Optional[str] = None
    provider_type: str
    model: str
    tokens_in: int
    tokens_out: int
    cost_usd: float
    latency_ms: int
    success: bool
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime


class UsageFilter(BaseModel):
    user_id: Optional[str] = None
    provider_id: Optional[str] = None
    success: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: Optional[int] = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return naive_utc(v)


class RateLimitStatus(BaseModel):
    provider_id: str
    allowed: bool


class BudgetStatus(BaseModel):
    provider_id: str
    day: date
    remaining_usd: Optional[float] = None  # None when the provider has no daily cap


# ============================================================================
# Analytics Schemas
# ============================================================================

class AnalyticsFilter(BaseModel):
    user_id: Optional[str] = None
    provider_id: Optional[str] = None
    start_date: datetime
    end_date: datetime

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v: datetime) -> datetime:
        return naive_utc(v)

    @model_validator(mode="after")
    def validate_range(self) -> "AnalyticsFilter":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class BreakdownEntry(BaseModel):
    requests: int = 0
    successful_requests: int = 0
    cost_usd: float = 0.0
    tokens: int = 0
    average_response_time_ms: float = 0.0
    success_rate: float = 0.0


class DailyUsage(BaseModel):
    date: date
    requests: int = 0
    cost_usd: float = 0.0
    tokens: int = 0


class UsageAnalytics(BaseModel):
    total_requests: int
    successful_requests: int
    failed_requests: int
    total_cost_usd: float
    total_tokens: int
    average_response_time_ms: float
    provider_breakdown: Dict[str, BreakdownEntry]
    model_breakdown: Dict[str, BreakdownEntry]
    daily_usage: List[DailyUsage]
    cost_trend: Trend = Trend.STABLE
    request_trend: Trend = Trend.STABLE


class CostAlertLimits(BaseModel):
    user_id: Optional[str] = None
    daily_limit: Optional[float] = Field(default=None, gt=0)
    monthly_limit: Optional[float] = Field(default=None, gt=0)
    provider_limits: Dict[str, float] = Field(default_factory=dict)

    @field_validator("provider_limits")
    @classmethod
    def validate_provider_limits(cls, v: Dict[str, float]) -> Dict[str, float]:
        for provider_id, limit in v.items():
            if limit <= 0:
                raise ValueError(f"limit for provider {provider_id} must be positive")
        return v


class CostAlert(BaseModel):
    severity: AlertSeverity
    scope: AlertScope
    kind: AlertKind
    message: str
    threshold_usd: float
    current_usd: float
    provider_id: Optional[str] = None


class Recommendation(BaseModel):
    priority: RecommendationPriority
    category: str  # cost_reduction, efficiency, provider_optimization, usage_pattern
    title: str
    description: str
    potential_savings_usd: Optional[float] = None


class ProviderMetrics(BaseModel):
    provider_id: str
    provider_name: str
    total_requests: int
    successful_requests: int
    failed_requests: int
    average_response_time_ms: float
    total_cost_usd: float
    last_request_at: Optional[datetime] = None


# ============================================================================
# Configuration Reload
# ============================================================================

class ReloadEntry(BaseModel):
    provider_id: str
    name: str
    outcome: ReloadOutcome
    errors: List[str] = Field(default_factory=list)
    health: Optional[HealthCheckResult] = None


class ReloadReport(BaseModel):
    status: BatchStatus
    validate_only: bool
    timestamp: datetime
    entries: List[ReloadEntry]
    warnings: List[str] = Field(default_factory=list)
    total_providers: int
    enabled_providers: int
    valid_providers: int
    healthy_providers: int


# ============================================================================
# Error Response Schemas
# ============================================================================

class ErrorDetail(BaseModel):
    """Error detail."""
    code: str
    message: str
    details: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Error response."""
    error: ErrorDetail
    request_id: Optional[str] = None
