"""Before/after impact of reassigning one requisition between recruiters."""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Mapping, Optional

from capacity_engine.analysis import load_status
from capacity_engine.capacity import (
    PartyCapacityProfile,
    cohort_capacity_defaults,
    default_date_range,
    infer_party_capacity,
)
from capacity_engine.config import DEFAULT_CONFIG, EngineConfig
from capacity_engine.congestion import (
    apply_congestion,
    compute_global_demand,
    default_stage_durations,
    hedge_for,
)
from capacity_engine.models import (
    CAPACITY_LIMITED_STAGES,
    CanonicalStage,
    Confidence,
    DateRange,
    RebalanceRecommendation,
    Snapshot,
    min_confidence,
)

logger = logging.getLogger(__name__)

# Share of overall utilization attributed to each capacity-limited stage
STAGE_WEIGHTS = {
    CanonicalStage.SCREEN: 0.35,
    CanonicalStage.HM_SCREEN: 0.25,
    CanonicalStage.ONSITE: 0.25,
    CanonicalStage.OFFER: 0.15,
}
MIN_SERVICE_RATE = 0.1


@dataclass(frozen=True)
class PartyState:
    utilization: float
    queue_delay_days: float
    status: str
    demand_by_stage: Mapping[CanonicalStage, int]


@dataclass(frozen=True)
class MoveImpact:
    req_id: str
    from_recruiter_id: str
    to_recruiter_id: str
    before_source: PartyState
    after_source: PartyState
    before_target: PartyState
    after_target: PartyState
    delay_reduction_days: float
    source_relief_percent: float
    target_impact_percent: float
    confidence: Confidence
    hedge_message: str


def stage_weighted_utilization(demand: Mapping[CanonicalStage, int], capacity: PartyCapacityProfile) -> float:
    weighted = 0.0
    total_weight = 0.0
    for stage in CAPACITY_LIMITED_STAGES:
        rate = max(capacity.service_rate(stage).rate, MIN_SERVICE_RATE)
        weight = STAGE_WEIGHTS.get(stage, 0.0)
        weighted += demand.get(stage, 0) / rate * weight
        total_weight += weight
    return weighted / total_weight if total_weight > 0 else 0.0


def simulate_move_impact(move: RebalanceRecommendation, snapshot: Snapshot,
                         config: EngineConfig = DEFAULT_CONFIG, date_range: Optional[DateRange] = None,
                         as_of: Optional[datetime] = None) -> MoveImpact:
    """Recompute recruiter-side demand and queue delay with the requisition moved."""
    as_of = as_of or datetime.now()
    date_range = date_range or default_date_range(as_of, config)
    durations = default_stage_durations(config)

    open_reqs = [r for r in snapshot.requisitions if r.is_open]
    moved_reqs = [
        replace(r, recruiter_id=move.to_recruiter_id) if r.req_id == move.req_id else r
        for r in open_reqs
    ]
    cohort = cohort_capacity_defaults(snapshot.requisitions, snapshot.events, date_range, config)

    def party_state(recruiter_id: str, requisitions, capacity: PartyCapacityProfile):
        demand = compute_global_demand(move.req_id, recruiter_id, None, snapshot.candidates, requisitions)
        congestion = apply_congestion(durations, demand, capacity, config)
        utilization = stage_weighted_utilization(demand.recruiter_demand, capacity)
        state = PartyState(
            utilization=utilization,
            queue_delay_days=congestion.total_queue_delay_days,
            status=load_status(utilization, config),
            demand_by_stage=dict(demand.recruiter_demand),
        )
        return state, demand.confidence

    source_capacity = infer_party_capacity(move.from_recruiter_id, None, open_reqs, snapshot.events,
                                           date_range, config, cohort)
    target_capacity = infer_party_capacity(move.to_recruiter_id, None, open_reqs, snapshot.events,
                                           date_range, config, cohort)

    before_source, source_demand_conf = party_state(move.from_recruiter_id, open_reqs, source_capacity)
    before_target, target_demand_conf = party_state(move.to_recruiter_id, open_reqs, target_capacity)
    after_source, _ = party_state(move.from_recruiter_id, moved_reqs, source_capacity)
    after_target, _ = party_state(move.to_recruiter_id, moved_reqs, target_capacity)

    source_reduction = before_source.queue_delay_days - after_source.queue_delay_days
    target_increase = after_target.queue_delay_days - before_target.queue_delay_days

    confidence = min_confidence(
        source_capacity.overall_confidence,
        target_capacity.overall_confidence,
        source_demand_conf,
        target_demand_conf,
    )

    logger.debug("Simulated move of %s from %s to %s: net delay reduction %.1f days",
                 move.req_id, move.from_recruiter_id, move.to_recruiter_id, source_reduction - target_increase)

    return MoveImpact(
        req_id=move.req_id,
        from_recruiter_id=move.from_recruiter_id,
        to_recruiter_id=move.to_recruiter_id,
        before_source=before_source,
        after_source=after_source,
        before_target=before_target,
        after_target=after_target,
        delay_reduction_days=source_reduction - target_increase,
        source_relief_percent=(before_source.utilization - after_source.utilization) * 100,
        target_impact_percent=(after_target.utilization - before_target.utilization) * 100,
        confidence=confidence,
        hedge_message=hedge_for(confidence),
    )
