"""
Data schemas for Reelroute.

Provider configuration, generation requests, health records, cost entries
and the results handed back by selection, budgeting and dispatch.
"""

from dataclasses import dataclass, field
from datetime import datetime, date, UTC
from enum import Enum
from typing import Optional
import uuid


class CapabilityClass(str, Enum):
    """Category of generation a provider serves."""
    VIDEO = "video"
    AUDIO = "audio"
    CONTENT = "content"


class ProviderRank(str, Enum):
    """Preference rank of a provider within its capability class."""
    PRIMARY = "primary"
    FALLBACK = "fallback"


class Priority(str, Enum):
    """Request priority (advisory, carried through to the backend)."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class Quality(str, Enum):
    """Output quality level. Lowered by the degraded retry."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class BudgetStatus(str, Enum):
    """Threshold state derived from daily spend."""
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"
    MAXIMUM = "maximum"

    @property
    def severity(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [
    BudgetStatus.NORMAL,
    BudgetStatus.WARNING,
    BudgetStatus.CRITICAL,
    BudgetStatus.MAXIMUM,
]


class SelectionReason(str, Enum):
    """Why a provider was chosen."""
    PRIMARY_HEALTHY = "primary_healthy"
    FALLBACK_PRIMARY_UNHEALTHY = "fallback_primary_unhealthy"
    FALLBACK_DURATION_EXCEEDED = "fallback_duration_exceeded"
    FALLBACK_COST_OPTIMIZATION = "fallback_cost_optimization"


@dataclass(frozen=True)
class ProviderConfig:
    """
    A generation backend as configured for this deployment.

    cost_per_unit is charged per UNITS_PER_COST_PERIOD duration units
    (per minute of output when units are seconds).
    """
    provider_id: str
    capability_class: CapabilityClass
    cost_per_unit: float
    max_duration_units: int
    region: str = "us-east-1"
    rank: ProviderRank = ProviderRank.PRIMARY
    model: Optional[str] = None


@dataclass(frozen=True)
class GenerationRequest:
    """
    A single generation request from the content source.

    Immutable: the degraded retry builds a new request with
    dataclasses.replace instead of mutating this one.
    """
    capability_class: CapabilityClass = CapabilityClass.VIDEO
    duration_units: int = 8
    max_cost: float = 0.15
    priority: Priority = Priority.NORMAL
    environment: str = "development"

    # Generation hints
    topic: str = "general"
    quality: Quality = Quality.HIGH
    include_audio: bool = False
    generate_subtitles: bool = False
    allow_fallback: bool = True

    # Identity
    request_id: str = field(default_factory=lambda: f"req_{uuid.uuid4().hex[:12]}")
    metadata: dict = field(default_factory=dict, compare=False)

    @property
    def service(self) -> str:
        """Cost-tracking service name for this request."""
        return self.capability_class.value


@dataclass
class ProviderHealthRecord:
    """Cached result of the last health probe for a provider."""
    provider_id: str
    healthy: bool
    last_checked_at: datetime
    cache_expires_at: datetime
    error_message: Optional[str] = None
    probe_count: int = 1

    def is_fresh(self, now: datetime) -> bool:
        return now < self.cache_expires_at


@dataclass(frozen=True)
class ThresholdSet:
    """Daily spend thresholds for one environment (USD)."""
    environment: str
    warning: float
    critical: float
    maximum: float

    def __post_init__(self):
        if not (0 <= self.warning < self.critical < self.maximum):
            raise ValueError(
                f"thresholds for '{self.environment}' must satisfy "
                f"0 <= warning < critical < maximum, got "
                f"{self.warning}/{self.critical}/{self.maximum}"
            )

    def status_for(self, amount: float) -> BudgetStatus:
        if amount >= self.maximum:
            return BudgetStatus.MAXIMUM
        if amount >= self.critical:
            return BudgetStatus.CRITICAL
        if amount >= self.warning:
            return BudgetStatus.WARNING
        return BudgetStatus.NORMAL

    def to_dict(self) -> dict:
        return {
            "warning": self.warning,
            "critical": self.critical,
            "maximum": self.maximum,
        }


@dataclass
class CostEntry:
    """
    One billable operation.

    daily_total and service_total are filled in by the governor when
    the entry is recorded.
    """
    service: str
    cost: float
    environment: Optional[str] = None
    timestamp: Optional[datetime] = None
    daily_total: Optional[float] = None
    service_total: Optional[float] = None
    metadata: dict = field(default_factory=dict)

    @property
    def timestamp_iso(self) -> Optional[str]:
        return self.timestamp.isoformat() if self.timestamp else None


@dataclass(frozen=True)
class AlertKey:
    """Dedup key for threshold alerts: one per level per calendar date."""
    level: BudgetStatus
    date: date


@dataclass(frozen=True)
class Recommendation:
    """Advisory action attached to a budget status."""
    type: str
    message: str
    action: str
    priority: str


@dataclass
class BudgetAlert:
    """Emitted once when daily spend first reaches a threshold level."""
    environment: str
    level: BudgetStatus
    daily_total: float
    threshold: float
    date: date
    message: str
    recommendations: list[Recommendation] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class BudgetDecision:
    """Result of a preauthorization check."""
    allowed: bool
    status: BudgetStatus
    environment: str
    service: str
    current_spend: float
    projected_spend: float
    estimated_cost: float
    recommendations: list[Recommendation] = field(default_factory=list)


@dataclass
class RecordResult:
    """Result of recording a cost entry."""
    entry: CostEntry
    status: BudgetStatus
    daily_spend: float
    service_spend: float
    alert: Optional[BudgetAlert] = None
    recommendations: list[Recommendation] = field(default_factory=list)


@dataclass
class InvocationResult:
    """What a provider backend returns for one generation call."""
    success: bool
    cost: float
    duration_actual: float
    output: Optional[dict] = None
    error: Optional[str] = None


@dataclass
class SelectionResult:
    """The provider chosen for a request and why."""
    provider: ProviderConfig
    reason: SelectionReason
    estimated_cost: float
    health: ProviderHealthRecord
    skip_reasons: dict[str, str] = field(default_factory=dict)


@dataclass
class DispatchResult:
    """Final outcome of a dispatch call."""
    request: GenerationRequest
    selection: SelectionResult
    invocation: InvocationResult
    budget: RecordResult
    attempt: int = 0
    degraded: bool = False
    dispatch_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def provider_id(self) -> str:
        return self.selection.provider.provider_id

    @property
    def cost(self) -> float:
        return self.invocation.cost
