"""
Taxonomy Opportunity Engine - Data Models

Shared data models used across the scoring engines and the batch pipeline.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Dict, Any, List, Optional


DEFAULT_POSITION = 20.0


def safe_divide(numerator: float, denominator: float) -> float:
    """Divide, returning 0 for a zero denominator."""
    if not denominator:
        return 0.0
    return numerator / denominator


@dataclass(frozen=True)
class NodeMetrics:
    """
    Aggregated recent-period metrics for one taxonomy node.

    Populated by the external metrics sync. CTR, conversion rate and
    average order value are always derived from the raw counters.
    """
    node_id: str
    position: float = DEFAULT_POSITION
    impressions: int = 0
    clicks: int = 0
    sessions: int = 0
    revenue: float = 0.0
    transactions: int = 0

    # Descriptive, not used in arithmetic
    project_id: Optional[str] = None
    depth: int = 0
    url: Optional[str] = None
    name: Optional[str] = None
    sku_count: int = 0  # Products under the node, drives the effort estimate

    @property
    def ctr(self) -> float:
        return safe_divide(self.clicks, self.impressions)

    @property
    def conversion_rate(self) -> float:
        return safe_divide(self.transactions, self.sessions)

    @property
    def average_order_value(self) -> float:
        return safe_divide(self.revenue, self.transactions)

    @property
    def has_data(self) -> bool:
        """False when the node has neither search nor analytics traffic."""
        return self.impressions > 0 or self.sessions > 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["ctr"] = self.ctr
        data["conversion_rate"] = self.conversion_rate
        data["average_order_value"] = self.average_order_value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeMetrics":
        """
        Build metrics from a storage row or JSON record.

        Missing counters become 0. A missing or zero position means the
        node has no ranking data and falls back to DEFAULT_POSITION.
        """
        node_id = data.get("node_id") or data.get("nodeId") or data.get("id")
        if not node_id:
            raise ValueError("Metrics record has no node id")

        return cls(
            node_id=str(node_id),
            position=float(data.get("position") or DEFAULT_POSITION),
            impressions=int(data.get("impressions") or 0),
            clicks=int(data.get("clicks") or 0),
            sessions=int(data.get("sessions") or 0),
            revenue=float(data.get("revenue") or 0.0),
            transactions=int(data.get("transactions") or 0),
            project_id=data.get("project_id") or data.get("projectId"),
            depth=int(data.get("depth") or 0),
            url=data.get("url"),
            name=data.get("name"),
            sku_count=int(data.get("sku_count") or data.get("skuCount") or 0),
        )


# ============================================================================
# OPPORTUNITY SCORE
# ============================================================================

@dataclass
class OpportunityScore:
    """Scorer output for one node."""
    node_id: str
    score: int
    factor_breakdown: Dict[str, float]
    confidence: float
    computed_at: datetime = field(default_factory=datetime.now)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["computed_at"] = self.computed_at.isoformat()
        return data


# ============================================================================
# REVENUE PROJECTION
# ============================================================================

class Timeframe(str, Enum):
    """How quickly the improvement is assumed to land."""
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class ImprovementMethod(str, Enum):
    """Kind of work a position jump usually takes (informational only)."""
    ORGANIC = "organic"
    CONTENT = "content"
    MIXED = "mixed"
    TECHNICAL = "technical"


@dataclass
class PartialAssumptions:
    """
    Caller overrides for a projection.

    Every field is optional; unset fields are derived from the node's
    current metrics by RevenueCalculator.resolve_assumptions().
    """
    ctr_improvement: Optional[float] = None
    conversion_rate_improvement: Optional[float] = None
    timeframe: Optional[Timeframe] = None
    seasonality_factor: Optional[float] = None
    competition_factor: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {k: v for k, v in asdict(self).items() if v is not None}
        if self.timeframe is not None:
            data["timeframe"] = Timeframe(self.timeframe).value
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["PartialAssumptions"]:
        if not data:
            return None
        timeframe = data.get("timeframe")
        return cls(
            ctr_improvement=data.get("ctr_improvement"),
            conversion_rate_improvement=data.get("conversion_rate_improvement"),
            timeframe=Timeframe(timeframe) if timeframe else None,
            seasonality_factor=data.get("seasonality_factor"),
            competition_factor=data.get("competition_factor"),
        )


@dataclass
class ProjectionAssumptions:
    """Fully resolved assumptions behind a projection."""
    target_position: int
    ctr_improvement: float
    conversion_rate_improvement: float
    timeframe: Timeframe
    seasonality_factor: float
    competition_factor: float
    improvement_method: ImprovementMethod


@dataclass
class ProjectedMetrics:
    """NodeMetrics-shaped projection at the target position."""
    position: float
    impressions: int
    clicks: float
    ctr: float
    sessions: float
    conversion_rate: float
    transactions: float
    revenue: float
    average_order_value: float


@dataclass
class RevenueLift:
    """Difference between projected and current performance."""
    additional_clicks: float = 0.0
    additional_sessions: float = 0.0
    additional_transactions: float = 0.0
    monthly_revenue_lift: float = 0.0
    annual_revenue_lift: float = 0.0
    percentage_increase: float = 0.0
    return_on_investment: float = 0.0
    estimated_cost: float = 0.0


@dataclass
class RevenueProjection:
    """Calculator output for one node."""
    node_id: str
    current: NodeMetrics
    projected: ProjectedMetrics
    lift: RevenueLift
    confidence: float
    time_to_impact_weeks: int
    assumptions: ProjectionAssumptions
    revenue_range: Dict[str, float] = field(default_factory=dict)
    has_data: bool = True
    calculated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["current"] = self.current.to_dict()
        data["assumptions"]["timeframe"] = self.assumptions.timeframe.value
        data["assumptions"]["improvement_method"] = self.assumptions.improvement_method.value
        data["calculated_at"] = self.calculated_at.isoformat()
        return data


# ============================================================================
# PERSISTED OPPORTUNITY
# ============================================================================

class Effort(str, Enum):
    """Implementation effort, estimated from the node's product count."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class OpportunityCategory(str, Enum):
    """Action bucket from score and effort."""
    QUICK_WIN = "quick-win"       # High score, low effort
    STRATEGIC = "strategic"       # High score, higher effort
    INCREMENTAL = "incremental"   # Medium score, low effort
    LONG_TERM = "long-term"       # Medium score, higher effort
    MAINTAIN = "maintain"         # Low score


@dataclass
class Opportunity:
    """Ranked opportunity record, one per project node (latest run wins)."""
    node_id: str
    project_id: str
    score: int
    revenue_potential: float
    priority: int
    factors: Dict[str, Any]
    combined_value: float
    confidence: float
    category: OpportunityCategory = OpportunityCategory.MAINTAIN
    effort: Effort = Effort.LOW
    job_id: Optional[str] = None
    computed_at: datetime = field(default_factory=datetime.now)
    valid_until: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["category"] = OpportunityCategory(self.category).value
        data["effort"] = Effort(self.effort).value
        data["computed_at"] = self.computed_at.isoformat()
        data["valid_until"] = self.valid_until.isoformat() if self.valid_until else None
        return data
