"""Recruiter x segment fit scoring with Bayesian shrinkage."""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from capacity_engine.config import DAYS_PER_WEEK, DEFAULT_CONFIG, EngineConfig, METRIC_NAMES
from capacity_engine.estimators import median, shrink, shrinkage_factor
from capacity_engine.models import (
    CanonicalStage,
    Candidate,
    FitMatrixCell,
    MetricResidual,
    Requisition,
    Segment,
    STAGE_ORDER,
    User,
    grade_confidence,
)
from capacity_engine.workload import base_difficulty, group_candidates, segment_for

logger = logging.getLogger(__name__)

# Lower time-to-fill is better
INVERTED_METRICS = frozenset({"ttf_days"})

MAX_TTF_DAYS = 365

FIT_LABELS = (
    (0.3, "Strong Fit"),
    (0.1, "Good Fit"),
    (-0.1, "Neutral"),
    (-0.3, "Weak Fit"),
)


def fit_label(fit_score: float) -> str:
    for threshold, label in FIT_LABELS:
        if fit_score > threshold:
            return label
    return "Poor Fit"


@dataclass(frozen=True)
class SegmentMetrics:
    recruiter_id: str
    segment: Segment
    req_count: int
    segment_wu: float
    hires: int
    ttf_days: Tuple[float, ...]
    offers_extended: int
    offers_accepted: int
    candidates_advanced: int
    weeks_active: float

    def observed(self, metric: str) -> Optional[float]:
        if metric == "hires_per_wu":
            return self.hires / self.segment_wu if self.segment_wu > 0 else None
        if metric == "ttf_days":
            return float(np.mean(self.ttf_days)) if self.ttf_days else None
        if metric == "offer_accept_rate":
            return self.offers_accepted / self.offers_extended if self.offers_extended else None
        if metric == "candidate_throughput":
            return self.candidates_advanced / self.weeks_active if self.weeks_active > 0 else None
        raise ValueError(f"unknown fit metric {metric!r}")

    def sample_size(self, metric: str) -> int:
        if metric == "hires_per_wu":
            return self.req_count
        if metric == "ttf_days":
            return len(self.ttf_days)
        if metric == "offer_accept_rate":
            return self.offers_extended
        if metric == "candidate_throughput":
            return self.candidates_advanced
        raise ValueError(f"unknown fit metric {metric!r}")


def _is_hired(cand: Candidate) -> bool:
    return cand.hired_at is not None or cand.current_stage == CanonicalStage.HIRED


def _offer_extended(cand: Candidate) -> bool:
    return (cand.offer_extended_at is not None or _is_hired(cand) or
            cand.current_stage == CanonicalStage.OFFER)


def _advanced(cand: Candidate) -> bool:
    return cand.current_stage in STAGE_ORDER and STAGE_ORDER.index(cand.current_stage) > 1


def _weeks_active(reqs: Sequence[Requisition], as_of: datetime) -> float:
    opened = [r.opened_at for r in reqs if r.opened_at is not None]
    if not opened:
        return 1.0
    ended = max((r.closed_at or as_of) for r in reqs)
    return max(1.0, (ended - min(opened)).days / DAYS_PER_WEEK)


def segment_metrics(recruiter_id: str, segment: Segment, reqs: Sequence[Requisition],
                    candidates_by_req: Dict[str, List[Candidate]], config: EngineConfig = DEFAULT_CONFIG,
                    as_of: Optional[datetime] = None) -> SegmentMetrics:
    """Historical outcomes of one recruiter's requisitions within a segment."""
    as_of = as_of or datetime.now()
    candidates = [c for r in reqs for c in candidates_by_req.get(r.req_id, [])]

    ttf = []
    for c in candidates:
        if c.hired_at is not None and c.applied_at is not None:
            days = (c.hired_at - c.applied_at).days
            if 0 < days < MAX_TTF_DAYS:
                ttf.append(float(days))

    return SegmentMetrics(
        recruiter_id=recruiter_id,
        segment=segment,
        req_count=len(reqs),
        segment_wu=sum(base_difficulty(r, config) for r in reqs),
        hires=sum(1 for c in candidates if _is_hired(c)),
        ttf_days=tuple(ttf),
        offers_extended=sum(1 for c in candidates if _offer_extended(c)),
        offers_accepted=sum(1 for c in candidates if _is_hired(c)),
        candidates_advanced=sum(1 for c in candidates if _advanced(c)),
        weeks_active=_weeks_active(reqs, as_of),
    )


def cohort_benchmarks(cohort: Iterable[SegmentMetrics],
                      config: EngineConfig = DEFAULT_CONFIG) -> Dict[str, Tuple[float, bool]]:
    """Expected value per metric and whether it fell back to the configured default."""
    cohort = list(cohort)
    benchmarks = {}
    for metric in METRIC_NAMES:
        values = [v for v in (m.observed(metric) for m in cohort) if v is not None]
        expected = median(values)
        if expected is None:
            benchmarks[metric] = (config.cohort_defaults[metric], True)
        else:
            benchmarks[metric] = (expected, False)
    return benchmarks


def relative_residual(observed: float, expected: float) -> float:
    if expected == 0:
        return 0.0 if observed == 0 else float(np.sign(observed))
    return float(np.clip((observed - expected) / abs(expected), -1.0, 1.0))


def metric_residuals(metrics: SegmentMetrics, benchmarks: Dict[str, Tuple[float, bool]],
                     config: EngineConfig = DEFAULT_CONFIG) -> Tuple[MetricResidual, ...]:
    residuals = []
    for metric in METRIC_NAMES:
        expected, fallback = benchmarks[metric]
        observed = metrics.observed(metric)
        n = metrics.sample_size(metric)
        weight = config.metric_weights[metric]
        factor = shrinkage_factor(n, config.shrinkage_k)

        if observed is None:
            residuals.append(MetricResidual(metric, None, expected, None, None, n, factor,
                                            None, weight, None, fallback))
            continue

        relative = relative_residual(observed, expected)
        adjusted = shrink(relative, n, config.shrinkage_k)
        signed = -adjusted if metric in INVERTED_METRICS else adjusted
        residuals.append(MetricResidual(
            metric=metric,
            observed=observed,
            expected=expected,
            raw_residual=observed - expected,
            relative_residual=relative,
            sample_size=n,
            shrinkage_factor=factor,
            adjusted_residual=adjusted,
            weight=weight,
            contribution=signed * weight,
            used_cohort_fallback=fallback,
        ))
    return tuple(residuals)


def combine_fit_score(residuals: Sequence[MetricResidual],
                      config: EngineConfig = DEFAULT_CONFIG) -> Optional[float]:
    """Weighted sum of shrunk residuals, or None if any metric is under-sampled."""
    for r in residuals:
        if r.contribution is None or r.sample_size < config.metric_min_samples[r.metric]:
            return None
    return float(sum(r.contribution for r in residuals))


def score_fit(metrics: SegmentMetrics, benchmarks: Dict[str, Tuple[float, bool]],
              config: EngineConfig = DEFAULT_CONFIG) -> Tuple[Optional[float], Tuple[MetricResidual, ...]]:
    residuals = metric_residuals(metrics, benchmarks, config)
    return combine_fit_score(residuals, config), residuals


def build_fit_matrix(requisitions: Sequence[Requisition], candidates: Sequence[Candidate],
                     users: Sequence[User] = (), config: EngineConfig = DEFAULT_CONFIG,
                     as_of: Optional[datetime] = None) -> List[FitMatrixCell]:
    """Sparse fit matrix: only recruiter x segment cells with a defined fit score.

    Ordered by fit score, then larger sample size, then recruiter id.
    """
    as_of = as_of or datetime.now()
    names = {u.user_id: u.name for u in users}
    candidates_by_req = group_candidates(candidates)

    grouped: Dict[Segment, Dict[str, List[Requisition]]] = defaultdict(lambda: defaultdict(list))
    for req in requisitions:
        if req.recruiter_id:
            grouped[segment_for(req)][req.recruiter_id].append(req)

    cells = []
    omitted = 0
    for segment in sorted(grouped, key=lambda s: s.key):
        by_recruiter = grouped[segment]
        cohort = [
            segment_metrics(rid, segment, by_recruiter[rid], candidates_by_req, config, as_of)
            for rid in sorted(by_recruiter)
        ]
        benchmarks = cohort_benchmarks(cohort, config)

        for metrics in cohort:
            fit_score, residuals = score_fit(metrics, benchmarks, config)
            if fit_score is None:
                omitted += 1
                continue
            min_n = min(r.sample_size for r in residuals)
            cells.append(FitMatrixCell(
                recruiter_id=metrics.recruiter_id,
                recruiter_name=names.get(metrics.recruiter_id, metrics.recruiter_id),
                segment=segment,
                fit_score=fit_score,
                confidence=grade_confidence(min_n, config.min_fit_cell_samples),
                sample_size=metrics.req_count,
                metrics=residuals,
                used_cohort_fallback=any(r.used_cohort_fallback for r in residuals),
            ))

    if omitted:
        logger.debug("Omitted %d recruiter/segment cells with insufficient samples", omitted)

    return rank_fit_cells(cells)


def rank_fit_cells(cells: Iterable[FitMatrixCell]) -> List[FitMatrixCell]:
    """Best fit first; ties go to the larger sample, then recruiter id."""
    return sorted(cells, key=lambda c: (-c.fit_score, -c.sample_size, c.recruiter_id, c.segment_key))


def fit_index(fit_matrix: Iterable[FitMatrixCell]) -> Dict[Tuple[str, str], FitMatrixCell]:
    return {(c.recruiter_id, c.segment_key): c for c in fit_matrix}


def get_fit_score(fit_matrix: Iterable[FitMatrixCell], recruiter_id: str, segment: Segment) -> Optional[float]:
    cell = fit_index(fit_matrix).get((recruiter_id, segment.key))
    return cell.fit_score if cell is not None else None
