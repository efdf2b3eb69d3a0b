"""Capacity analysis orchestration for the Recruiter Capacity Engine."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from capacity_engine.capacity import default_date_range, infer_all_capacities
from capacity_engine.config import DEFAULT_CONFIG, EngineConfig
from capacity_engine.fit import build_fit_matrix, fit_index, fit_label
from capacity_engine.models import (
    BlockingReason,
    CapacityAnalysisResult,
    CapacityDriver,
    CapacityProfile,
    Confidence,
    DateRange,
    FitMatrixCell,
    RebalanceRecommendation,
    RecruiterLoadRow,
    Requisition,
    Segment,
    Snapshot,
    TeamCapacitySummary,
    WorkloadRecord,
    grade_confidence,
)
from capacity_engine.recommendations import recommend
from capacity_engine.workload import build_all_workloads, calculate_demand, hm_friction_weights

logger = logging.getLogger(__name__)

AGING_DRIVER_DAYS = 90
EMPTY_PIPELINE_REMAINING = 0.8
HIGH_FRICTION = 1.1
HIGH_AGING = 1.2
MAX_DRIVERS = 3


def load_status(utilization: float, config: EngineConfig = DEFAULT_CONFIG) -> str:
    if utilization > config.utilization_critical:
        return "critical"
    if utilization > config.utilization_overloaded:
        return "overloaded"
    if utilization > config.utilization_balanced_low:
        return "balanced"
    if utilization > config.utilization_available:
        return "available"
    return "underutilized"


# =============================================================================
# BLOCKING CONDITIONS
# =============================================================================

def check_blocking_conditions(requisitions: Sequence[Requisition],
                              config: EngineConfig = DEFAULT_CONFIG) -> List[BlockingReason]:
    """Every gate the snapshot fails; empty when analysis may proceed."""
    open_reqs = [r for r in requisitions if r.is_open]
    recruiter_ids = {r.recruiter_id for r in open_reqs if r.recruiter_id}
    with_recruiter = sum(1 for r in open_reqs if r.recruiter_id)
    coverage = with_recruiter / len(open_reqs) if open_reqs else 0.0

    reasons = []
    if len(recruiter_ids) < config.min_recruiters_for_team:
        reasons.append(BlockingReason(
            code="insufficient_recruiters",
            message=f"fewer than {config.min_recruiters_for_team} recruiters with req assignments",
            remediation="Assign recruiters to open requisitions in your ATS export",
        ))
    if len(open_reqs) < config.min_reqs_for_analysis:
        reasons.append(BlockingReason(
            code="insufficient_reqs",
            message=f"fewer than {config.min_reqs_for_analysis} open requisitions",
            remediation="Widen the snapshot to include more open requisitions",
        ))
    if coverage < config.min_recruiter_id_coverage:
        reasons.append(BlockingReason(
            code="low_recruiter_id_coverage",
            message=f"recruiter_id missing on {round((1 - coverage) * 100)}% of reqs",
            remediation="Populate recruiter_id on requisitions before re-running",
        ))
    return reasons


# =============================================================================
# LOAD ROWS AND TEAM SUMMARY
# =============================================================================

def top_driver_for(workloads: Sequence[WorkloadRecord], utilization: float,
                   config: EngineConfig = DEFAULT_CONFIG) -> str:
    if utilization > config.utilization_overloaded and workloads:
        top = max(workloads, key=lambda w: (w.workload_units, w.req_id))
        title = top.req_title or top.req_id
        if top.components.remaining_work > EMPTY_PIPELINE_REMAINING:
            return f"Empty pipeline on {title}"
        if top.components.aging_multiplier > HIGH_AGING:
            return f"Aging req: {title}"
        if top.components.friction_multiplier > HIGH_FRICTION:
            return f"Slow HM on {title}"
        return f"High volume ({len(workloads)} reqs)"
    if utilization < config.utilization_available:
        return "Available capacity"
    return "Balanced workload"


def build_recruiter_load_rows(req_workloads: Sequence[WorkloadRecord], capacities: Sequence[CapacityProfile],
                              config: EngineConfig = DEFAULT_CONFIG) -> List[RecruiterLoadRow]:
    rows = []
    for cap in capacities:
        workloads = [w for w in req_workloads if w.recruiter_id == cap.recruiter_id]
        demand = calculate_demand(cap.recruiter_id, req_workloads)
        capacity = cap.sustainable_wu_per_week
        utilization = demand / capacity if capacity > 0 else 0.0
        rows.append(RecruiterLoadRow(
            recruiter_id=cap.recruiter_id,
            recruiter_name=cap.recruiter_name,
            demand_wu=demand,
            capacity_wu=capacity,
            utilization=utilization,
            status=load_status(utilization, config),
            top_driver=top_driver_for(workloads, utilization, config),
            req_count=len(workloads),
            confidence=cap.confidence,
            used_team_median=cap.used_team_median,
        ))
    rows.sort(key=lambda r: (-r.utilization, r.recruiter_id))
    return rows


def identify_capacity_drivers(req_workloads: Sequence[WorkloadRecord]) -> Tuple[CapacityDriver, ...]:
    drivers = []

    empty = [w for w in req_workloads if w.components.remaining_work > EMPTY_PIPELINE_REMAINING]
    if empty:
        drivers.append(CapacityDriver(
            type="empty_pipeline",
            description=f"{len(empty)} reqs with empty or thin pipelines",
            impact_wu=round(sum(w.workload_units * 0.3 for w in empty)),
            req_ids=tuple(w.req_id for w in empty),
        ))

    friction = [w for w in req_workloads if w.components.friction_multiplier > HIGH_FRICTION]
    if friction:
        drivers.append(CapacityDriver(
            type="high_friction_hm",
            description=f"{len(friction)} reqs with slow HM responsiveness",
            impact_wu=round(sum(w.workload_units * (w.components.friction_multiplier - 1.0) for w in friction)),
            req_ids=tuple(w.req_id for w in friction),
        ))

    aging = [w for w in req_workloads if w.age_days >= AGING_DRIVER_DAYS]
    if aging:
        drivers.append(CapacityDriver(
            type="aging_reqs",
            description=f"{len(aging)} reqs open {AGING_DRIVER_DAYS}+ days",
            impact_wu=round(sum(w.workload_units * (w.components.aging_multiplier - 1.0) for w in aging)),
            req_ids=tuple(w.req_id for w in aging),
        ))

    # Stable sort keeps the declaration order on equal impact
    drivers.sort(key=lambda d: -d.impact_wu)
    return tuple(drivers[:MAX_DRIVERS])


def build_team_summary(recruiter_loads: Sequence[RecruiterLoadRow], req_workloads: Sequence[WorkloadRecord],
                       config: EngineConfig = DEFAULT_CONFIG) -> TeamCapacitySummary:
    team_demand = sum(r.demand_wu for r in recruiter_loads)
    team_capacity = sum(r.capacity_wu for r in recruiter_loads)
    gap = team_demand - team_capacity
    gap_percent = round(gap / team_capacity * 100) if team_capacity > 0 else 0

    if gap_percent > 10:
        status = "understaffed"
    elif gap_percent < -10:
        status = "overstaffed"
    else:
        status = "balanced"

    with_data = sum(1 for r in recruiter_loads if r.confidence != Confidence.INSUFFICIENT)
    return TeamCapacitySummary(
        team_demand=team_demand,
        team_capacity=team_capacity,
        capacity_gap=gap,
        capacity_gap_percent=gap_percent,
        status=status,
        confidence=grade_confidence(with_data, config.min_recruiters_for_team),
        top_drivers=identify_capacity_drivers(req_workloads),
    )


def collect_warnings(snapshot: Snapshot, capacities: Sequence[CapacityProfile],
                     fit_matrix: Sequence[FitMatrixCell]) -> List[str]:
    warnings = []
    if not snapshot.events:
        warnings.append("No event history: capacities use the default team capacity and HM friction is neutral")
    on_median = [c.recruiter_id for c in capacities if c.used_team_median]
    if on_median:
        warnings.append(f"{len(on_median)} recruiter(s) use the team median capacity: {', '.join(on_median)}")
    unassigned = sum(1 for r in snapshot.requisitions if r.is_open and not r.recruiter_id)
    if unassigned:
        warnings.append(f"{unassigned} open req(s) without recruiter_id excluded from demand")
    if not fit_matrix:
        warnings.append("No recruiter/segment pair has enough history for a fit score")
    return warnings


# =============================================================================
# MAIN ANALYSIS
# =============================================================================

def blocked_result(reasons: Sequence[BlockingReason], config: EngineConfig = DEFAULT_CONFIG) -> CapacityAnalysisResult:
    return CapacityAnalysisResult(
        blocked=True,
        block_reason="; ".join(r.message for r in reasons),
        block_reasons=tuple(reasons),
        config_version=config.version,
    )


def analyze_capacity(snapshot: Snapshot, config: EngineConfig = DEFAULT_CONFIG,
                     date_range: Optional[DateRange] = None,
                     as_of: Optional[datetime] = None) -> CapacityAnalysisResult:
    """Run the full capacity analysis over a snapshot."""
    as_of = as_of or datetime.now()
    date_range = date_range or default_date_range(as_of, config)

    reasons = check_blocking_conditions(snapshot.requisitions, config)
    if reasons:
        logger.info("Capacity analysis blocked: %s", "; ".join(r.code for r in reasons))
        return blocked_result(reasons, config)

    hm_weights = hm_friction_weights(snapshot.requisitions, snapshot.events, config, date_range)
    workloads = build_all_workloads(snapshot.requisitions, snapshot.candidates, hm_weights, config, as_of)
    capacities = infer_all_capacities(snapshot.requisitions, snapshot.events, snapshot.users,
                                      as_of=as_of, config=config, hm_weights=hm_weights)
    loads = build_recruiter_load_rows(workloads, capacities, config)
    summary = build_team_summary(loads, workloads, config)
    fit_matrix = build_fit_matrix(snapshot.requisitions, snapshot.candidates, snapshot.users, config, as_of)
    moves = recommend(loads, workloads, fit_matrix, config.max_recommendations, config)

    logger.info("Capacity analysis: %d recruiters, %d open reqs, team %s (gap %d%%), %d fit cells, %d moves",
                len(loads), len(workloads), summary.status, summary.capacity_gap_percent,
                len(fit_matrix), len(moves))

    return CapacityAnalysisResult(
        blocked=False,
        block_reason=None,
        team_summary=summary,
        recruiter_loads=tuple(loads),
        fit_matrix=tuple(fit_matrix),
        rebalance_recommendations=tuple(moves),
        req_workloads=tuple(workloads),
        recruiter_capacities=tuple(capacities),
        warnings=tuple(collect_warnings(snapshot, capacities, fit_matrix)),
        config_version=config.version,
    )


# =============================================================================
# EXPLAIN VIEWS
# =============================================================================

@dataclass(frozen=True)
class OverloadExplanation:
    load: RecruiterLoadRow
    capacity: CapacityProfile
    workloads: Tuple[WorkloadRecord, ...]
    outbound_moves: Tuple[RebalanceRecommendation, ...]
    summary: str


@dataclass(frozen=True)
class FitExplanation:
    recruiter_id: str
    segment: Segment
    cell: Optional[FitMatrixCell]
    label: Optional[str]
    summary: str


def explain_overload(result: CapacityAnalysisResult, recruiter_id: str) -> Optional[OverloadExplanation]:
    """Drill-down for one recruiter's load; None when the recruiter is not in the result."""
    load = next((r for r in result.recruiter_loads if r.recruiter_id == recruiter_id), None)
    capacity = next((c for c in result.recruiter_capacities if c.recruiter_id == recruiter_id), None)
    if load is None or capacity is None:
        return None

    workloads = sorted((w for w in result.req_workloads if w.recruiter_id == recruiter_id),
                       key=lambda w: (-w.workload_units, w.req_id))
    source = "team median" if capacity.used_team_median else f"{capacity.stable_weeks_count} stable weeks"
    summary = (f"{load.recruiter_name} carries {load.demand_wu:.1f} WU against {load.capacity_wu:.1f} WU/week "
               f"({source}), {load.utilization:.0%} utilization ({load.status}). Top driver: {load.top_driver}.")

    return OverloadExplanation(
        load=load,
        capacity=capacity,
        workloads=tuple(workloads),
        outbound_moves=tuple(m for m in result.rebalance_recommendations if m.from_recruiter_id == recruiter_id),
        summary=summary,
    )


def explain_fit(result: CapacityAnalysisResult, recruiter_id: str, segment: Segment) -> FitExplanation:
    cell = fit_index(result.fit_matrix).get((recruiter_id, segment.key))
    if cell is None:
        return FitExplanation(recruiter_id, segment, None, None,
                              f"Not enough history to score {recruiter_id} on {segment.key}")

    parts = []
    for m in cell.metrics:
        parts.append(f"{m.metric} {m.observed:.2f} vs {m.expected:.2f} (n={m.sample_size})")
    summary = f"{cell.recruiter_name} on {segment.key}: {cell.fit_score:+.2f} ({cell.confidence}). " + "; ".join(parts)
    return FitExplanation(recruiter_id, segment, cell, fit_label(cell.fit_score), summary)


def load_rows_by_status(result: CapacityAnalysisResult) -> Mapping[str, List[RecruiterLoadRow]]:
    grouped: Dict[str, List[RecruiterLoadRow]] = {}
    for row in result.recruiter_loads:
        grouped.setdefault(row.status, []).append(row)
    return grouped
