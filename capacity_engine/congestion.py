"""Congestion model: queue delay added to stage durations when demand exceeds capacity.

queue_delay_days = ((demand - service_rate) / service_rate) * 7 * queue_factor,
capped at MAX_QUEUE_DELAY_DAYS.

Demand is the owning party's global workload: active candidates in the
stages they own across every open requisition in their book, not just the
requisition being forecast. Stage durations are gamma distributed (as in the
completion-time model); congestion shifts the location parameter and leaves
the shape untouched.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Mapping, Optional, Sequence, Tuple

from scipy import stats as stats_module

from capacity_engine.capacity import (
    PartyCapacityProfile,
    default_date_range,
    infer_party_capacity,
)
from capacity_engine.config import (
    DAYS_PER_WEEK,
    DEFAULT_CONFIG,
    DEFAULT_QUEUE_FACTOR,
    EngineConfig,
    MAX_QUEUE_DELAY_DAYS,
)
from capacity_engine.models import (
    CAPACITY_LIMITED_STAGES,
    CanonicalStage,
    Candidate,
    Confidence,
    DateRange,
    Requisition,
    STAGE_LABELS,
    STAGE_OWNER,
    Snapshot,
    StageOwner,
    min_confidence,
)

logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS = 3
MAX_BOTTLENECKS = 3


@dataclass(frozen=True)
class StageDuration:
    """Gamma-distributed stage duration in days."""
    shape: float
    scale: float
    loc: float = 0.0

    @property
    def median(self) -> float:
        return float(stats_module.gamma.median(self.shape, loc=self.loc, scale=self.scale))

    @property
    def mean(self) -> float:
        return float(stats_module.gamma.mean(self.shape, loc=self.loc, scale=self.scale))

    def percentile(self, q: float) -> float:
        return float(stats_module.gamma.ppf(q, self.shape, loc=self.loc, scale=self.scale))

    def shifted(self, days: float) -> "StageDuration":
        return replace(self, loc=self.loc + days)


def default_stage_durations(config: EngineConfig = DEFAULT_CONFIG) -> Dict[CanonicalStage, StageDuration]:
    return {
        CanonicalStage(stage): StageDuration(shape=shape, scale=scale)
        for stage, (shape, scale) in config.stage_durations.items()
    }


def queue_delay(demand: float, service_rate: float, queue_factor: float = DEFAULT_QUEUE_FACTOR,
                max_delay: float = MAX_QUEUE_DELAY_DAYS) -> float:
    if service_rate <= 0 or demand <= service_rate:
        return 0.0
    raw = ((demand - service_rate) / service_rate) * DAYS_PER_WEEK * queue_factor
    return min(raw, max_delay)


def reqs_to_reassign(demand: float, service_rate: float, open_req_count: int) -> int:
    """Requisitions to move so demand falls to the service rate, within [0, open_req_count]."""
    if open_req_count <= 0 or demand <= 0 or demand <= service_rate:
        return 0
    per_req = demand / open_req_count
    needed = math.ceil((demand - service_rate) / per_req)
    return max(0, min(open_req_count, needed))


def hedge_for(confidence: Confidence) -> str:
    if confidence == Confidence.HIGH:
        return "Based on observed patterns"
    if confidence == Confidence.MED:
        return "Based on similar cohorts"
    return "Estimated (limited data)"


# =============================================================================
# GLOBAL DEMAND
# =============================================================================

@dataclass(frozen=True)
class PartyContext:
    party_id: Optional[str]
    open_req_count: int
    total_candidates_in_flight: int
    req_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ConfidenceReason:
    code: str
    message: str


@dataclass(frozen=True)
class GlobalDemand:
    demand_scope: str
    recruiter_demand: Mapping[CanonicalStage, int]
    hm_demand: Mapping[CanonicalStage, int]
    recruiter_context: PartyContext
    hm_context: PartyContext
    selected_req_pipeline: Mapping[CanonicalStage, int]
    confidence: Confidence
    reasons: Tuple[ConfidenceReason, ...] = ()

    def demand_for(self, stage: CanonicalStage) -> int:
        owner = STAGE_OWNER.get(stage)
        if owner == StageOwner.HM:
            return self.hm_demand.get(stage, 0)
        if owner in (StageOwner.RECRUITER, StageOwner.SHARED):
            return self.recruiter_demand.get(stage, 0)
        return self.selected_req_pipeline.get(stage, 0)

    def context_for(self, owner: StageOwner) -> PartyContext:
        return self.hm_context if owner == StageOwner.HM else self.recruiter_context


def _owned_stages(owner: StageOwner) -> set:
    if owner == StageOwner.HM:
        return {s for s, o in STAGE_OWNER.items() if o == StageOwner.HM}
    return {s for s, o in STAGE_OWNER.items() if o in (StageOwner.RECRUITER, StageOwner.SHARED)}


def _count_by_stage(candidates: Sequence[Candidate], req_ids: set, stages: set) -> Dict[CanonicalStage, int]:
    counts: Dict[CanonicalStage, int] = {}
    for cand in candidates:
        if cand.req_id in req_ids and cand.current_stage in stages:
            counts[cand.current_stage] = counts.get(cand.current_stage, 0) + 1
    return counts


def compute_global_demand(req_id: str, recruiter_id: Optional[str], hm_id: Optional[str],
                          candidates: Sequence[Candidate], requisitions: Sequence[Requisition]) -> GlobalDemand:
    """Stage demand across the recruiter's and HM's entire open book."""
    open_reqs = [r for r in requisitions if r.is_open]
    active = [c for c in candidates if c.is_active]
    reasons = []

    recruiter_req_ids = sorted(r.req_id for r in open_reqs if recruiter_id and r.recruiter_id == recruiter_id)
    hm_req_ids = sorted(r.req_id for r in open_reqs if hm_id and r.hiring_manager_id == hm_id)

    recruiter_set, hm_set = set(recruiter_req_ids), set(hm_req_ids)
    recruiter_demand = _count_by_stage(active, recruiter_set, _owned_stages(StageOwner.RECRUITER))
    hm_demand = _count_by_stage(active, hm_set, _owned_stages(StageOwner.HM))

    selected: Dict[CanonicalStage, int] = {}
    for cand in active:
        if cand.req_id == req_id:
            selected[cand.current_stage] = selected.get(cand.current_stage, 0) + 1

    if not recruiter_id and not hm_id:
        scope, confidence = "single_req", Confidence.LOW
        reasons.append(ConfidenceReason("missing_owner_ids", "Both recruiter_id and hm_id missing; using single-req fallback"))
    elif recruiter_id and hm_id:
        scope, confidence = "global_by_recruiter", Confidence.HIGH
        if len(recruiter_req_ids) > 1:
            reasons.append(ConfidenceReason(
                "global_workload", f"Using global workload: recruiter has {len(recruiter_req_ids)} open reqs"))
    elif recruiter_id:
        scope, confidence = "global_by_recruiter", Confidence.MED
        reasons.append(ConfidenceReason("missing_hm_id", "hm_id missing; HM demand uses cohort defaults"))
    else:
        scope, confidence = "global_by_hm", Confidence.MED
        reasons.append(ConfidenceReason("missing_recruiter_id", "recruiter_id missing; recruiter demand uses cohort defaults"))

    if sum(selected.values()) == 0:
        confidence = min_confidence(confidence, Confidence.LOW)
        reasons.append(ConfidenceReason("empty_pipeline", "Selected req has 0 active candidates in pipeline"))

    return GlobalDemand(
        demand_scope=scope,
        recruiter_demand=recruiter_demand,
        hm_demand=hm_demand,
        recruiter_context=PartyContext(
            party_id=recruiter_id,
            open_req_count=len(recruiter_req_ids),
            total_candidates_in_flight=sum(1 for c in active if c.req_id in recruiter_set),
            req_ids=tuple(recruiter_req_ids),
        ),
        hm_context=PartyContext(
            party_id=hm_id,
            open_req_count=len(hm_req_ids),
            total_candidates_in_flight=sum(1 for c in active if c.req_id in hm_set),
            req_ids=tuple(hm_req_ids),
        ),
        selected_req_pipeline=selected,
        confidence=confidence,
        reasons=tuple(reasons),
    )


# =============================================================================
# PENALTY APPLICATION
# =============================================================================

@dataclass(frozen=True)
class StageQueueDiagnostic:
    stage: CanonicalStage
    stage_name: str
    owner: StageOwner
    demand: int
    service_rate: float
    queue_delay_days: float
    confidence: Confidence
    uses_prior: bool

    @property
    def is_bottleneck(self) -> bool:
        return self.queue_delay_days > 0


@dataclass(frozen=True)
class AdjustedDuration:
    stage: CanonicalStage
    original: StageDuration
    adjusted: StageDuration
    queue_delay_days: float

    @property
    def original_median_days(self) -> float:
        return self.original.median

    @property
    def adjusted_median_days(self) -> float:
        return self.adjusted.median


@dataclass(frozen=True)
class CongestionRecommendation:
    rank: int
    type: str
    description: str
    estimated_impact_days: int
    stage: Optional[CanonicalStage] = None
    owner: Optional[StageOwner] = None
    current_value: Optional[float] = None
    target_value: Optional[float] = None


@dataclass(frozen=True)
class CongestionResult:
    adjusted_durations: Mapping[CanonicalStage, AdjustedDuration]
    stage_diagnostics: Tuple[StageQueueDiagnostic, ...]
    top_bottlenecks: Tuple[StageQueueDiagnostic, ...]
    total_queue_delay_days: float
    confidence: Confidence
    global_demand: GlobalDemand
    recommendations: Tuple[CongestionRecommendation, ...] = ()
    confidence_reasons: Tuple[ConfidenceReason, ...] = field(default_factory=tuple)


def _owner_id(owner: StageOwner, demand: GlobalDemand) -> Optional[str]:
    return demand.context_for(owner).party_id


def stage_confidence(stage: CanonicalStage, capacity: PartyCapacityProfile, demand: GlobalDemand) -> Confidence:
    rate = capacity.service_rate(stage)
    if rate.uses_prior or not _owner_id(STAGE_OWNER[stage], demand):
        return Confidence.LOW
    return rate.confidence


def build_recommendations(bottlenecks: Sequence[StageQueueDiagnostic], demand: GlobalDemand,
                          confidence: Confidence,
                          config: EngineConfig = DEFAULT_CONFIG) -> Tuple[CongestionRecommendation, ...]:
    hedge = hedge_for(confidence)
    drafts = []

    for diag in bottlenecks[:2]:
        target_rate = math.ceil(diag.demand / config.target_utilization)
        if target_rate > diag.service_rate:
            drafts.append(dict(
                type="increase_throughput",
                description=f"{hedge}: Increase {diag.stage_name} throughput to ~{target_rate}/week",
                estimated_impact_days=round(diag.queue_delay_days * 0.7),
                stage=diag.stage, owner=diag.owner,
                current_value=diag.service_rate, target_value=float(target_rate),
            ))

        context = demand.context_for(diag.owner)
        if context.open_req_count > 3:
            n = reqs_to_reassign(diag.demand, diag.service_rate, context.open_req_count)
            if 0 < n < context.open_req_count:
                party = "HM" if diag.owner == StageOwner.HM else "Recruiter"
                drafts.append(dict(
                    type="reassign_workload",
                    description=f"{hedge}: Reassign ~{n} req(s) to reduce {party} load",
                    estimated_impact_days=round(diag.queue_delay_days * 0.5),
                    stage=diag.stage, owner=diag.owner,
                    current_value=float(context.open_req_count),
                    target_value=float(context.open_req_count - n),
                ))

    if demand.confidence == Confidence.LOW:
        drafts.append(dict(
            type="improve_data",
            description=f"{hedge}: Add recruiter_id and hm_id to improve forecast accuracy",
            estimated_impact_days=0,
        ))

    return tuple(CongestionRecommendation(rank=i + 1, **d) for i, d in enumerate(drafts[:MAX_RECOMMENDATIONS]))


def apply_congestion(stage_durations: Mapping[CanonicalStage, StageDuration], demand: GlobalDemand,
                     capacity: PartyCapacityProfile, config: EngineConfig = DEFAULT_CONFIG) -> CongestionResult:
    """Add queue delay to each capacity-limited stage of a requisition's forecast."""
    defaults = default_stage_durations(config)
    diagnostics = []
    adjusted = {}
    reasons = list(demand.reasons)

    for stage in CAPACITY_LIMITED_STAGES:
        rate = capacity.service_rate(stage)
        stage_demand = demand.demand_for(stage)
        delay = queue_delay(stage_demand, rate.rate, config.queue_factor, config.max_queue_delay_days)
        original = stage_durations.get(stage) or defaults[stage]

        diagnostics.append(StageQueueDiagnostic(
            stage=stage,
            stage_name=STAGE_LABELS.get(stage, stage.value),
            owner=STAGE_OWNER[stage],
            demand=stage_demand,
            service_rate=rate.rate,
            queue_delay_days=delay,
            confidence=stage_confidence(stage, capacity, demand),
            uses_prior=rate.uses_prior,
        ))
        adjusted[stage] = AdjustedDuration(stage, original, original.shifted(delay), delay)

    bottlenecks = sorted((d for d in diagnostics if d.is_bottleneck),
                         key=lambda d: (-d.queue_delay_days, CAPACITY_LIMITED_STAGES.index(d.stage)))

    confidence = min_confidence(*(d.confidence for d in diagnostics), demand.confidence)

    prior_count = sum(1 for d in diagnostics if d.uses_prior)
    if prior_count >= 2:
        confidence = min_confidence(confidence, Confidence.LOW)
        reasons.append(ConfidenceReason("prior_heavy", f"{prior_count} stage estimates rely on priors"))

    missing = [o for o in (StageOwner.RECRUITER, StageOwner.HM) if not _owner_id(o, demand)]
    if missing:
        confidence = min_confidence(confidence, Confidence.LOW)
        reasons.append(ConfidenceReason(
            "missing_owner_id", "Missing owner id for " + ", ".join(o.value for o in missing)))

    total_delay = sum(d.queue_delay_days for d in diagnostics)
    if total_delay > 0:
        logger.debug("Queue delay %.1f days across %d bottleneck stages", total_delay, len(bottlenecks))

    return CongestionResult(
        adjusted_durations=adjusted,
        stage_diagnostics=tuple(diagnostics),
        top_bottlenecks=tuple(bottlenecks[:MAX_BOTTLENECKS]),
        total_queue_delay_days=total_delay,
        confidence=confidence,
        global_demand=demand,
        recommendations=build_recommendations(bottlenecks[:MAX_BOTTLENECKS], demand, confidence, config),
        confidence_reasons=tuple(reasons),
    )


def forecast_requisition(req_id: str, snapshot: Snapshot, config: EngineConfig = DEFAULT_CONFIG,
                         date_range: Optional[DateRange] = None, as_of: Optional[datetime] = None,
                         stage_durations: Optional[Mapping[CanonicalStage, StageDuration]] = None) -> CongestionResult:
    """Congestion-adjusted stage durations for one requisition."""
    req = next((r for r in snapshot.requisitions if r.req_id == req_id), None)
    if req is None:
        raise ValueError(f"Unknown requisition {req_id!r}")

    as_of = as_of or datetime.now()
    date_range = date_range or default_date_range(as_of, config)

    demand = compute_global_demand(req_id, req.recruiter_id, req.hiring_manager_id,
                                   snapshot.candidates, snapshot.requisitions)
    capacity = infer_party_capacity(req.recruiter_id, req.hiring_manager_id,
                                    snapshot.requisitions, snapshot.events, date_range, config)
    return apply_congestion(stage_durations or default_stage_durations(config), demand, capacity, config)
