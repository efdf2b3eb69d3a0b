"""Workload scoring for the Recruiter Capacity Engine.

WorkloadScore = BaseDifficulty x RemainingWork x FrictionMultiplier x AgingMultiplier
"""

import logging
import re
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
from scipy import stats as stats_module

from capacity_engine.config import DEFAULT_CONFIG, EngineConfig, HOURS_PER_DAY
from capacity_engine.models import (
    CanonicalStage,
    Candidate,
    DateRange,
    Event,
    EventType,
    INACTIVE_STAGES,
    Requisition,
    Segment,
    WorkloadComponents,
    WorkloadRecord,
)

logger = logging.getLogger(__name__)

DEFAULT_JOB_FAMILY = "General"
DEFAULT_LOCATION_TYPE = "Hybrid"


def level_to_band(level: Optional[str]) -> str:
    """Map a raw level string (L4, IC5, Senior, Director...) to a level band."""
    normalized = re.sub(r"[^A-Z0-9]", "", (level or "").upper())

    if re.fullmatch(r"(L|IC)?[12]", normalized) or re.search(r"JUNIOR|ENTRY|ASSOCIATE", normalized):
        return "Junior"
    if re.fullmatch(r"(L|IC)?[34]", normalized) or re.search(r"MID|INTERMEDIATE", normalized):
        return "Mid"
    if re.fullmatch(r"(L|IC)?[56]", normalized) or re.search(r"SENIOR|STAFF|PRINCIPAL", normalized):
        return "Senior"
    if re.fullmatch(r"(L|IC)?[789]", normalized) or re.search(r"DIRECTOR|VP|HEAD|LEAD|MANAGER|CHIEF", normalized):
        return "Leadership"
    return "Mid"


def segment_for(req: Requisition) -> Segment:
    return Segment(
        job_family=req.job_family or DEFAULT_JOB_FAMILY,
        level_band=level_to_band(req.level),
        location_type=req.location_type or DEFAULT_LOCATION_TYPE,
    )


def base_difficulty(req: Requisition, config: EngineConfig = DEFAULT_CONFIG) -> float:
    level_weight = config.level_weights.get(req.level or "", 1.0)
    market_weight = config.market_weights.get(req.location_type or "", 1.0)

    if req.location_city:
        city = req.location_city.strip().lower()
        if any(city == hard.lower() for hard in config.hard_markets):
            market_weight += config.hard_market_bonus

    niche_weight = config.niche_weights.get(req.job_family or "", 1.0)
    return level_weight * market_weight * niche_weight


def remaining_work(pipeline: Iterable[Candidate], config: EngineConfig = DEFAULT_CONFIG) -> float:
    """Fraction of recruiting work left on a requisition, in (0, 1].

    Rejected and withdrawn candidates do not count as progress, so a pipeline
    holding only them scores like an empty one.
    """
    return remaining_work_for_stages([c.current_stage for c in pipeline], config)


def remaining_work_for_stages(stages: Iterable[CanonicalStage], config: EngineConfig = DEFAULT_CONFIG) -> float:
    progress = 0.0
    for stage in stages:
        if stage in INACTIVE_STAGES:
            continue
        progress = max(progress, config.stage_progress.get(stage.value, 0.0))
    return 1.0 - progress


def aging_multiplier(age_days: float, config: EngineConfig = DEFAULT_CONFIG) -> float:
    age_days = max(0.0, age_days)
    raw = 1.0 + (age_days / config.aging_scale_days) * config.aging_scale_factor
    return min(config.aging_cap, raw)


def requisition_age_days(req: Requisition, as_of: datetime) -> int:
    if req.opened_at is None:
        return 0
    return max(0, (as_of - req.opened_at).days)


def score(req: Requisition, pipeline: Sequence[Candidate], hm_friction_weight: float = 1.0,
          config: EngineConfig = DEFAULT_CONFIG, as_of: Optional[datetime] = None) -> WorkloadRecord:
    """Score one requisition's current workload."""
    as_of = as_of or datetime.now()
    pipeline = [c for c in pipeline if c.req_id == req.req_id]

    age_days = requisition_age_days(req, as_of)
    components = WorkloadComponents(
        base_difficulty=base_difficulty(req, config),
        remaining_work=remaining_work(pipeline, config),
        friction_multiplier=max(1.0, hm_friction_weight),
        aging_multiplier=aging_multiplier(age_days, config),
    )
    units = (components.base_difficulty * components.remaining_work *
             components.friction_multiplier * components.aging_multiplier)

    return WorkloadRecord(
        req_id=req.req_id,
        req_title=req.title or "",
        recruiter_id=req.recruiter_id,
        workload_units=max(0.0, units),
        components=components,
        age_days=age_days,
        segment=segment_for(req),
        has_offer_out=any(c.current_stage == CanonicalStage.OFFER for c in pipeline),
        has_finalist=any(c.current_stage == CanonicalStage.FINAL for c in pipeline),
    )


def group_candidates(candidates: Iterable[Candidate]) -> Dict[str, List[Candidate]]:
    by_req: Dict[str, List[Candidate]] = defaultdict(list)
    for cand in candidates:
        by_req[cand.req_id].append(cand)
    return by_req


def build_all_workloads(requisitions: Sequence[Requisition], candidates: Sequence[Candidate],
                        hm_weights: Mapping[str, float], config: EngineConfig = DEFAULT_CONFIG,
                        as_of: Optional[datetime] = None) -> List[WorkloadRecord]:
    """Score every open requisition that has an owning recruiter."""
    as_of = as_of or datetime.now()
    by_req = group_candidates(candidates)

    records = []
    skipped = 0
    for req in requisitions:
        if not req.is_open:
            continue
        if not req.recruiter_id:
            skipped += 1
            continue
        hm_weight = hm_weights.get(req.hiring_manager_id or "", 1.0)
        records.append(score(req, by_req.get(req.req_id, []), hm_weight, config, as_of))

    if skipped:
        logger.debug("Excluded %d open requisitions without a recruiter from demand", skipped)
    return records


def calculate_demand(recruiter_id: str, workloads: Iterable[WorkloadRecord]) -> float:
    return sum(w.workload_units for w in workloads if w.recruiter_id == recruiter_id)


# =============================================================================
# HIRING MANAGER FRICTION
# =============================================================================

def friction_from_percentile(percentile: float, config: EngineConfig = DEFAULT_CONFIG) -> float:
    """Map a feedback-latency percentile (0-100) onto [1.0, max_friction_multiplier].

    HMs at or faster than the median are never penalized.
    """
    excess = min(1.0, max(0.0, percentile - 50.0) / 50.0)
    return 1.0 + excess * (config.max_friction_multiplier - 1.0)


def hm_feedback_latencies(hm_req_ids: set, events: Sequence[Event]) -> Dict[str, List[float]]:
    """Hours from each completed interview to the next feedback for that candidate."""
    feedback_times: Dict[str, List[datetime]] = defaultdict(list)
    for e in events:
        if e.event_type == EventType.FEEDBACK_SUBMITTED and e.candidate_id:
            feedback_times[e.candidate_id].append(e.event_at)
    for times in feedback_times.values():
        times.sort()

    latencies: Dict[str, List[float]] = defaultdict(list)
    for e in events:
        if e.event_type != EventType.INTERVIEW_COMPLETED or e.req_id not in hm_req_ids or not e.candidate_id:
            continue
        follow_up = next((t for t in feedback_times.get(e.candidate_id, []) if t > e.event_at), None)
        if follow_up is not None:
            hours = (follow_up - e.event_at).total_seconds() / 3600.0
            latencies[e.candidate_id].append(hours)
    return latencies


def hm_friction_weights(requisitions: Sequence[Requisition], events: Sequence[Event],
                        config: EngineConfig = DEFAULT_CONFIG,
                        date_range: Optional[DateRange] = None) -> Dict[str, float]:
    """Friction multiplier per hiring manager, 1.0 where history is insufficient."""
    if date_range is not None:
        events = [e for e in events if date_range.contains(e.event_at)]

    reqs_by_hm: Dict[str, set] = defaultdict(set)
    for req in requisitions:
        if req.hiring_manager_id:
            reqs_by_hm[req.hiring_manager_id].add(req.req_id)

    medians: Dict[str, float] = {}
    for hm_id in sorted(reqs_by_hm):
        latencies = hm_feedback_latencies(reqs_by_hm[hm_id], events)
        loop_count = len(latencies)
        if loop_count < config.min_loops_for_hm_weight:
            continue
        flat = [h for per_candidate in latencies.values() for h in per_candidate]
        medians[hm_id] = float(np.median(flat))

    weights = {hm_id: 1.0 for hm_id in sorted(reqs_by_hm)}
    if len(medians) < 2:
        return weights

    population = sorted(medians.values())
    for hm_id, med in medians.items():
        percentile = stats_module.percentileofscore(population, med, kind="mean")
        weights[hm_id] = friction_from_percentile(float(percentile), config)

    logger.debug("Computed HM friction for %d of %d hiring managers (median latency %.1f days)",
                 len(medians), len(reqs_by_hm), float(np.median(population)) / HOURS_PER_DAY)
    return weights
