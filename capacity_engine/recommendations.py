"""Rebalance recommendations for the Recruiter Capacity Engine."""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from capacity_engine.config import DEFAULT_CONFIG, EngineConfig
from capacity_engine.fit import fit_index
from capacity_engine.models import (
    FitMatrixCell,
    RebalanceRecommendation,
    RecruiterLoadRow,
    WorkloadRecord,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Move:
    workload: WorkloadRecord
    source_id: str
    target_id: str
    source_before: float
    source_after: float
    target_before: float
    target_after: float
    target_fit: Optional[float]
    source_fit: Optional[float]

    @property
    def relief(self) -> float:
        return self.source_before - self.source_after

    def rank_key(self):
        fit = self.target_fit if self.target_fit is not None else 0.0
        return (-fit, -self.relief, self.target_after, self.workload.req_id, self.target_id)


def _utilization(demand: float, capacity: float) -> float:
    return demand / capacity if capacity > 0 else 0.0


def movable_workloads(source_id: str, req_workloads: Sequence[WorkloadRecord], moved: set,
                      config: EngineConfig = DEFAULT_CONFIG) -> List[WorkloadRecord]:
    """Heaviest requisitions a source could hand off, excluding any with an offer or finalist out."""
    movable = [
        w for w in req_workloads
        if w.recruiter_id == source_id and not w.in_final_stages and w.req_id not in moved
    ]
    movable.sort(key=lambda w: (-w.workload_units, w.req_id))
    return movable[:config.max_candidate_reqs_per_source]


def rationale_for(move: _Move, names: Dict[str, str]) -> str:
    w = move.workload
    text = (
        f"{names[move.source_id]} is at {move.source_before:.0%} utilization; moving {w.req_id} "
        f"({w.workload_units:.1f} WU) brings them to {move.source_after:.0%}. "
        f"{names[move.target_id]} goes from {move.target_before:.0%} to {move.target_after:.0%}."
    )
    if move.target_fit is not None:
        text += f" Fit for {w.segment.key}: {move.target_fit:+.2f}."
    return text


def recommend(recruiter_loads: Sequence[RecruiterLoadRow], req_workloads: Sequence[WorkloadRecord],
              fit_matrix: Sequence[FitMatrixCell], max_results: Optional[int] = None,
              config: EngineConfig = DEFAULT_CONFIG) -> List[RebalanceRecommendation]:
    """Greedy requisition moves from overloaded recruiters to ones with headroom.

    Each round evaluates every (source, requisition, target) triple against
    the current simulated loads and commits the best-ranked move. A
    requisition moves at most once and each target takes a bounded number
    of inbound moves.
    """
    max_results = config.max_recommendations if max_results is None else max_results
    if max_results <= 0:
        return []

    names = {row.recruiter_id: row.recruiter_name for row in recruiter_loads}
    capacity = {row.recruiter_id: row.capacity_wu for row in recruiter_loads}
    demand = {row.recruiter_id: row.demand_wu for row in recruiter_loads}
    recruiter_ids = sorted(capacity)
    fits = fit_index(fit_matrix)

    def fit_of(recruiter_id: str, workload: WorkloadRecord) -> Optional[float]:
        cell = fits.get((recruiter_id, workload.segment.key))
        return cell.fit_score if cell is not None else None

    inbound = {rid: 0 for rid in recruiter_ids}
    moved: set = set()
    committed: List[_Move] = []

    while len(committed) < max_results:
        options = []
        for source_id in recruiter_ids:
            source_cap = capacity[source_id]
            source_before = _utilization(demand[source_id], source_cap)
            if source_cap <= 0 or source_before <= config.utilization_overloaded:
                continue

            for workload in movable_workloads(source_id, req_workloads, moved, config):
                source_after = _utilization(demand[source_id] - workload.workload_units, source_cap)
                if source_before - source_after < config.min_source_relief:
                    continue

                for target_id in recruiter_ids:
                    target_cap = capacity[target_id]
                    if target_id == source_id or target_cap <= 0:
                        continue
                    if inbound[target_id] >= config.max_inbound_moves_per_target:
                        continue
                    target_after = _utilization(demand[target_id] + workload.workload_units, target_cap)
                    if target_after > config.max_dest_utilization_after_move:
                        continue
                    target_fit = fit_of(target_id, workload)
                    if target_fit is not None and target_fit < config.min_fit_for_assignment:
                        continue

                    options.append(_Move(
                        workload=workload,
                        source_id=source_id,
                        target_id=target_id,
                        source_before=source_before,
                        source_after=source_after,
                        target_before=_utilization(demand[target_id], target_cap),
                        target_after=target_after,
                        target_fit=target_fit,
                        source_fit=fit_of(source_id, workload),
                    ))

        if not options:
            break

        best = min(options, key=_Move.rank_key)
        committed.append(best)
        moved.add(best.workload.req_id)
        inbound[best.target_id] += 1
        demand[best.source_id] -= best.workload.workload_units
        demand[best.target_id] += best.workload.workload_units

    logger.debug("Rebalance produced %d moves", len(committed))

    results = []
    for rank, move in enumerate(committed, start=1):
        improvement = None
        if move.target_fit is not None and move.source_fit is not None:
            improvement = move.target_fit - move.source_fit
        results.append(RebalanceRecommendation(
            req_id=move.workload.req_id,
            req_title=move.workload.req_title,
            from_recruiter_id=move.source_id,
            from_recruiter_name=names[move.source_id],
            from_utilization_before=move.source_before,
            from_utilization_after=move.source_after,
            to_recruiter_id=move.target_id,
            to_recruiter_name=names[move.target_id],
            to_utilization_before=move.target_before,
            to_utilization_after=move.target_after,
            target_fit_score=move.target_fit,
            fit_score_improvement=improvement,
            demand_impact_wu=move.workload.workload_units,
            rationale=rationale_for(move, names),
            rank=rank,
        ))
    return results
