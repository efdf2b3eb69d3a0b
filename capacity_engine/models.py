"""Data models for the Recruiter Capacity Engine."""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum, IntEnum
from typing import Dict, Optional, Tuple


class CanonicalStage(str, Enum):
    LEAD = "LEAD"
    APPLIED = "APPLIED"
    SCREEN = "SCREEN"
    HM_SCREEN = "HM_SCREEN"
    ONSITE = "ONSITE"
    FINAL = "FINAL"
    OFFER = "OFFER"
    HIRED = "HIRED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"


STAGE_ORDER = (
    CanonicalStage.LEAD,
    CanonicalStage.APPLIED,
    CanonicalStage.SCREEN,
    CanonicalStage.HM_SCREEN,
    CanonicalStage.ONSITE,
    CanonicalStage.FINAL,
    CanonicalStage.OFFER,
    CanonicalStage.HIRED,
)

TERMINAL_STAGES = frozenset({CanonicalStage.HIRED, CanonicalStage.REJECTED, CanonicalStage.WITHDRAWN})
INACTIVE_STAGES = frozenset({CanonicalStage.REJECTED, CanonicalStage.WITHDRAWN})


class EventType(str, Enum):
    STAGE_CHANGE = "STAGE_CHANGE"
    INTERVIEW_COMPLETED = "INTERVIEW_COMPLETED"
    FEEDBACK_SUBMITTED = "FEEDBACK_SUBMITTED"
    OFFER_EXTENDED = "OFFER_EXTENDED"
    OFFER_ACCEPTED = "OFFER_ACCEPTED"
    OFFER_DECLINED = "OFFER_DECLINED"
    REJECTION_SENT = "REJECTION_SENT"


class StageOwner(str, Enum):
    RECRUITER = "recruiter"
    HM = "hm"
    SHARED = "shared"


# Which party's throughput limits each capacity-constrained stage.
STAGE_OWNER: Dict[CanonicalStage, StageOwner] = {
    CanonicalStage.SCREEN: StageOwner.RECRUITER,
    CanonicalStage.HM_SCREEN: StageOwner.HM,
    CanonicalStage.ONSITE: StageOwner.SHARED,
    CanonicalStage.OFFER: StageOwner.RECRUITER,
}

CAPACITY_LIMITED_STAGES = tuple(STAGE_OWNER)

STAGE_LABELS = {
    CanonicalStage.SCREEN: "Recruiter Screen",
    CanonicalStage.HM_SCREEN: "HM Interview",
    CanonicalStage.ONSITE: "Onsite",
    CanonicalStage.OFFER: "Offer",
}


class Confidence(IntEnum):
    INSUFFICIENT = 0
    LOW = 1
    MED = 2
    HIGH = 3

    def __str__(self):
        return self.name


def min_confidence(*levels: Confidence) -> Confidence:
    """Worst of the given grades; LOW when nothing is supplied."""
    if not levels:
        return Confidence.LOW
    return min(levels)


def grade_confidence(n: float, threshold: float) -> Confidence:
    """Grade a sample size against its documented minimum."""
    if threshold <= 0:
        raise ValueError(f"confidence threshold must be positive, got {threshold}")
    if n < threshold:
        return Confidence.INSUFFICIENT
    if n < threshold * 1.5:
        return Confidence.LOW
    if n < threshold * 2:
        return Confidence.MED
    return Confidence.HIGH


# =============================================================================
# INPUT RECORDS
# =============================================================================

@dataclass(frozen=True)
class Requisition:
    req_id: str
    title: str = ""
    job_family: Optional[str] = None
    level: Optional[str] = None
    location_type: Optional[str] = None
    location_city: Optional[str] = None
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    recruiter_id: Optional[str] = None
    hiring_manager_id: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.closed_at is None


@dataclass(frozen=True)
class Candidate:
    candidate_id: str
    req_id: str
    current_stage: CanonicalStage
    stage_entered_at: Optional[datetime] = None
    applied_at: Optional[datetime] = None
    hired_at: Optional[datetime] = None
    offer_extended_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.current_stage not in TERMINAL_STAGES


@dataclass(frozen=True)
class Event:
    event_id: str
    event_type: EventType
    req_id: str
    event_at: datetime
    candidate_id: Optional[str] = None
    actor_id: Optional[str] = None
    from_stage: Optional[CanonicalStage] = None
    to_stage: Optional[CanonicalStage] = None

    @property
    def is_hire(self) -> bool:
        return (self.event_type == EventType.OFFER_ACCEPTED or
                (self.event_type == EventType.STAGE_CHANGE and self.to_stage == CanonicalStage.HIRED))


@dataclass(frozen=True)
class User:
    user_id: str
    name: str
    role: Optional[str] = None


@dataclass(frozen=True)
class Snapshot:
    requisitions: Tuple[Requisition, ...] = ()
    candidates: Tuple[Candidate, ...] = ()
    events: Tuple[Event, ...] = ()
    users: Tuple[User, ...] = ()

    def __post_init__(self):
        for name in ("requisitions", "candidates", "events", "users"):
            object.__setattr__(self, name, tuple(getattr(self, name)))

    def user_names(self) -> Dict[str, str]:
        return {u.user_id: u.name for u in self.users}


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


# =============================================================================
# DERIVED RECORDS
# =============================================================================

@dataclass(frozen=True)
class Segment:
    job_family: str
    level_band: str
    location_type: str

    @property
    def key(self) -> str:
        return f"{self.job_family}/{self.level_band}/{self.location_type}"

    @classmethod
    def from_key(cls, key: str) -> Optional["Segment"]:
        parts = key.split("/")
        if len(parts) != 3:
            return None
        return cls(*parts)


@dataclass(frozen=True)
class WorkloadComponents:
    base_difficulty: float
    remaining_work: float
    friction_multiplier: float
    aging_multiplier: float


@dataclass(frozen=True)
class WorkloadRecord:
    req_id: str
    req_title: str
    recruiter_id: Optional[str]
    workload_units: float
    components: WorkloadComponents
    age_days: int
    segment: Segment
    has_offer_out: bool = False
    has_finalist: bool = False

    @property
    def in_final_stages(self) -> bool:
        return self.has_offer_out or self.has_finalist


@dataclass(frozen=True)
class CapacityProfile:
    recruiter_id: str
    recruiter_name: str
    sustainable_wu_per_week: float
    stable_weeks_count: int
    confidence: Confidence
    used_team_median: bool
    observed_wu_per_week: Optional[float] = None
    weekly_loads: Tuple[float, ...] = ()


@dataclass(frozen=True)
class MetricResidual:
    metric: str
    observed: Optional[float]
    expected: float
    raw_residual: Optional[float]
    relative_residual: Optional[float]
    sample_size: int
    shrinkage_factor: float
    adjusted_residual: Optional[float]
    weight: float
    contribution: Optional[float]
    used_cohort_fallback: bool = False


@dataclass(frozen=True)
class FitMatrixCell:
    recruiter_id: str
    recruiter_name: str
    segment: Segment
    fit_score: float
    confidence: Confidence
    sample_size: int
    metrics: Tuple[MetricResidual, ...]
    used_cohort_fallback: bool = False

    @property
    def segment_key(self) -> str:
        return self.segment.key

    def metric(self, name: str) -> Optional[MetricResidual]:
        for m in self.metrics:
            if m.metric == name:
                return m
        return None


@dataclass(frozen=True)
class RecruiterLoadRow:
    recruiter_id: str
    recruiter_name: str
    demand_wu: float
    capacity_wu: float
    utilization: float
    status: str
    top_driver: str
    req_count: int
    confidence: Confidence
    used_team_median: bool = False


@dataclass(frozen=True)
class RebalanceRecommendation:
    req_id: str
    req_title: str
    from_recruiter_id: str
    from_recruiter_name: str
    from_utilization_before: float
    from_utilization_after: float
    to_recruiter_id: str
    to_recruiter_name: str
    to_utilization_before: float
    to_utilization_after: float
    target_fit_score: Optional[float]
    fit_score_improvement: Optional[float]
    demand_impact_wu: float
    rationale: str
    rank: int


@dataclass(frozen=True)
class CapacityDriver:
    type: str
    description: str
    impact_wu: float
    req_ids: Tuple[str, ...]


@dataclass(frozen=True)
class TeamCapacitySummary:
    team_demand: float
    team_capacity: float
    capacity_gap: float
    capacity_gap_percent: int
    status: str
    confidence: Confidence
    top_drivers: Tuple[CapacityDriver, ...]


@dataclass(frozen=True)
class BlockingReason:
    code: str
    message: str
    remediation: str


@dataclass(frozen=True)
class CapacityAnalysisResult:
    blocked: bool
    block_reason: Optional[str]
    block_reasons: Tuple[BlockingReason, ...] = ()
    team_summary: Optional[TeamCapacitySummary] = None
    recruiter_loads: Tuple[RecruiterLoadRow, ...] = ()
    fit_matrix: Tuple[FitMatrixCell, ...] = ()
    rebalance_recommendations: Tuple[RebalanceRecommendation, ...] = ()
    req_workloads: Tuple[WorkloadRecord, ...] = ()
    recruiter_capacities: Tuple[CapacityProfile, ...] = ()
    warnings: Tuple[str, ...] = field(default_factory=tuple)
    config_version: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)
