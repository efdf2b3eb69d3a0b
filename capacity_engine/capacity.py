"""Sustainable capacity inference for the Recruiter Capacity Engine.

Two views of recruiter supply are inferred from historical events:

- Sustainable capacity (WU/week): median workload carried across "stable"
  weeks, i.e. weeks with enough open requisitions and activity and no
  hire/offer-acceptance spike.
- Stage service rates (candidates/week): per-stage throughput for the
  congestion model, shrunk toward cohort priors when samples are small.

Only observed timestamps are used. When evidence is insufficient the team
median or cohort prior is substituted and flagged.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from capacity_engine.config import DAYS_PER_WEEK, DEFAULT_CONFIG, EngineConfig
from capacity_engine.estimators import median, shrink_rate
from capacity_engine.models import (
    CAPACITY_LIMITED_STAGES,
    CanonicalStage,
    CapacityProfile,
    Confidence,
    DateRange,
    Event,
    EventType,
    Requisition,
    STAGE_OWNER,
    StageOwner,
    User,
    grade_confidence,
    min_confidence,
)
from capacity_engine.workload import aging_multiplier, base_difficulty, remaining_work_for_stages

logger = logging.getLogger(__name__)

# Lower bounds on cohort per-person rates, candidates/week
MIN_COHORT_RATES = {
    CanonicalStage.SCREEN: 1.0,
    CanonicalStage.HM_SCREEN: 0.5,
    CanonicalStage.ONSITE: 0.5,
    CanonicalStage.OFFER: 0.25,
}


# =============================================================================
# STABLE WEEKS
# =============================================================================

@dataclass(frozen=True)
class WeekSummary:
    week_start: datetime
    week_end: datetime
    open_req_count: int
    stage_progressions: int
    hire_events: int
    workload_units: float

    def is_stable(self, config: EngineConfig = DEFAULT_CONFIG) -> bool:
        return (self.open_req_count >= config.min_open_reqs_for_stable_week and
                self.stage_progressions >= 1 and
                self.hire_events == 0)


def week_windows(as_of: datetime, weeks_back: int) -> List[Tuple[datetime, datetime]]:
    """Monday-start weeks, most recent first; end is exclusive."""
    if weeks_back < 1:
        raise ValueError(f"weeks_back must be at least 1, got {weeks_back}")
    current_start = datetime(as_of.year, as_of.month, as_of.day, tzinfo=as_of.tzinfo) - timedelta(days=as_of.weekday())
    windows = []
    for i in range(weeks_back):
        start = current_start - timedelta(weeks=i)
        windows.append((start, start + timedelta(days=DAYS_PER_WEEK)))
    return windows


def _open_during(req: Requisition, start: datetime, end: datetime) -> bool:
    opened_before_end = req.opened_at is None or req.opened_at < end
    not_closed_before_start = req.closed_at is None or req.closed_at >= start
    return opened_before_end and not_closed_before_start


def _stages_at(stage_events: Sequence[Event], moment: datetime) -> List[CanonicalStage]:
    """Latest known stage per candidate before `moment`, from stage-change events."""
    latest: Dict[str, CanonicalStage] = {}
    for e in stage_events:
        if e.event_at >= moment:
            break
        if e.to_stage is not None:
            latest[e.candidate_id or e.event_id] = e.to_stage
    return list(latest.values())


def summarize_weeks(recruiter_id: str, requisitions: Sequence[Requisition], events: Sequence[Event],
                    weeks_back: Optional[int] = None, *, as_of: datetime,
                    config: EngineConfig = DEFAULT_CONFIG,
                    hm_weights: Optional[Mapping[str, float]] = None) -> List[WeekSummary]:
    weeks_back = config.weeks_back if weeks_back is None else weeks_back
    hm_weights = hm_weights or {}

    recruiter_reqs = [r for r in requisitions if r.recruiter_id == recruiter_id]
    req_ids = {r.req_id for r in recruiter_reqs}
    recruiter_events = [e for e in events if e.req_id in req_ids]

    stage_events: Dict[str, List[Event]] = defaultdict(list)
    for e in sorted(recruiter_events, key=lambda e: (e.event_at, e.event_id)):
        if e.event_type == EventType.STAGE_CHANGE:
            stage_events[e.req_id].append(e)

    summaries = []
    for start, end in week_windows(as_of, weeks_back):
        open_reqs = [r for r in recruiter_reqs if _open_during(r, start, end)]
        in_week = [e for e in recruiter_events if start <= e.event_at < end]

        units = 0.0
        for req in open_reqs:
            age = (end - req.opened_at).days if req.opened_at else 0
            units += (base_difficulty(req, config) *
                      remaining_work_for_stages(_stages_at(stage_events.get(req.req_id, []), end), config) *
                      max(1.0, hm_weights.get(req.hiring_manager_id or "", 1.0)) *
                      aging_multiplier(age, config))

        summaries.append(WeekSummary(
            week_start=start,
            week_end=end,
            open_req_count=len(open_reqs),
            stage_progressions=sum(1 for e in in_week if e.event_type == EventType.STAGE_CHANGE
                                   and e.to_stage != CanonicalStage.HIRED),
            hire_events=sum(1 for e in in_week if e.is_hire),
            workload_units=units,
        ))
    return summaries


def stable_week_loads(recruiter_id: str, requisitions: Sequence[Requisition], events: Sequence[Event],
                      weeks_back: Optional[int] = None, *, as_of: datetime,
                      config: EngineConfig = DEFAULT_CONFIG,
                      hm_weights: Optional[Mapping[str, float]] = None) -> List[float]:
    weeks = summarize_weeks(recruiter_id, requisitions, events, weeks_back,
                            as_of=as_of, config=config, hm_weights=hm_weights)
    return [w.workload_units for w in weeks if w.is_stable(config)]


def _profile_from_loads(recruiter_id: str, recruiter_name: str, loads: Sequence[float],
                        team_median: Optional[float], config: EngineConfig) -> CapacityProfile:
    stable_weeks = len(loads)
    confidence = grade_confidence(stable_weeks, config.min_stable_weeks)

    if stable_weeks < config.min_stable_weeks:
        fallback = config.default_team_capacity_wu if team_median is None else team_median
        logger.debug("Recruiter %s has %d stable weeks; using team median %.2f WU/week",
                     recruiter_id, stable_weeks, fallback)
        return CapacityProfile(
            recruiter_id=recruiter_id,
            recruiter_name=recruiter_name,
            sustainable_wu_per_week=fallback,
            stable_weeks_count=stable_weeks,
            confidence=confidence,
            used_team_median=True,
            observed_wu_per_week=None,
            weekly_loads=tuple(loads),
        )

    observed = median(loads)
    return CapacityProfile(
        recruiter_id=recruiter_id,
        recruiter_name=recruiter_name,
        sustainable_wu_per_week=observed,
        stable_weeks_count=stable_weeks,
        confidence=confidence,
        used_team_median=False,
        observed_wu_per_week=observed,
        weekly_loads=tuple(loads),
    )


def infer_capacity(recruiter_id: str, requisitions: Sequence[Requisition], events: Sequence[Event],
                   weeks_back: Optional[int] = None, *, as_of: Optional[datetime] = None,
                   config: EngineConfig = DEFAULT_CONFIG, team_median: Optional[float] = None,
                   hm_weights: Optional[Mapping[str, float]] = None,
                   recruiter_name: Optional[str] = None) -> CapacityProfile:
    """Sustainable WU/week for one recruiter."""
    as_of = as_of or datetime.now()
    loads = stable_week_loads(recruiter_id, requisitions, events, weeks_back,
                              as_of=as_of, config=config, hm_weights=hm_weights)
    return _profile_from_loads(recruiter_id, recruiter_name or recruiter_id, loads, team_median, config)


def assigned_recruiter_ids(requisitions: Sequence[Requisition]) -> List[str]:
    return sorted({r.recruiter_id for r in requisitions if r.recruiter_id})


def infer_all_capacities(requisitions: Sequence[Requisition], events: Sequence[Event],
                         users: Sequence[User] = (), *, as_of: Optional[datetime] = None,
                         config: EngineConfig = DEFAULT_CONFIG,
                         hm_weights: Optional[Mapping[str, float]] = None) -> List[CapacityProfile]:
    """Capacity profiles for every recruiter with a requisition assignment.

    The team median pools all recruiters' stable-week totals and is the
    fallback for recruiters without enough stable weeks of their own.
    """
    as_of = as_of or datetime.now()
    names = {u.user_id: u.name for u in users}
    recruiter_ids = assigned_recruiter_ids(requisitions)

    loads_by_recruiter = {
        rid: stable_week_loads(rid, requisitions, events, as_of=as_of, config=config, hm_weights=hm_weights)
        for rid in recruiter_ids
    }
    pooled = [load for loads in loads_by_recruiter.values() for load in loads]
    team_median = median(pooled)
    if team_median is None:
        logger.info("No stable weeks observed for any recruiter; using default capacity %.1f WU/week",
                    config.default_team_capacity_wu)
        team_median = config.default_team_capacity_wu

    return [
        _profile_from_loads(rid, names.get(rid, rid), loads_by_recruiter[rid], team_median, config)
        for rid in recruiter_ids
    ]


# =============================================================================
# STAGE SERVICE RATES
# =============================================================================

@dataclass(frozen=True)
class StageThroughput:
    stage: CanonicalStage
    throughput_per_week: float
    n_weeks: int
    n_transitions: int
    confidence: Confidence
    prior_throughput: float
    observed_throughput: float


@dataclass(frozen=True)
class CohortCapacityDefaults:
    rates: Mapping[CanonicalStage, float]
    weeks_analyzed: int
    global_prior_stages: Tuple[CanonicalStage, ...] = ()


@dataclass(frozen=True)
class ServiceRate:
    stage: CanonicalStage
    rate: float
    confidence: Confidence
    uses_prior: bool


@dataclass(frozen=True)
class PartyCapacityProfile:
    recruiter_id: Optional[str]
    hm_id: Optional[str]
    recruiter_stages: Mapping[CanonicalStage, StageThroughput]
    hm_stages: Mapping[CanonicalStage, StageThroughput]
    cohort: CohortCapacityDefaults
    overall_confidence: Confidence
    used_cohort_fallback: bool
    reasons: Tuple[str, ...] = field(default_factory=tuple)

    def service_rate(self, stage: CanonicalStage) -> ServiceRate:
        """Observed rate for the stage's owner, or the cohort prior."""
        owner = STAGE_OWNER.get(stage, StageOwner.SHARED)
        observed = None
        if owner == StageOwner.HM:
            observed = self.hm_stages.get(stage) or self.recruiter_stages.get(stage)
        else:
            observed = self.recruiter_stages.get(stage)

        if observed is not None:
            return ServiceRate(stage, observed.throughput_per_week, observed.confidence, False)
        return ServiceRate(stage, self.cohort.rates[stage], Confidence.LOW, True)


def default_date_range(as_of: datetime, config: EngineConfig = DEFAULT_CONFIG) -> DateRange:
    return DateRange(start=as_of - timedelta(weeks=config.weeks_back), end=as_of)


def weeks_in(date_range: DateRange) -> int:
    return max(1, (date_range.end - date_range.start).days // DAYS_PER_WEEK)


def count_stage_transitions(events: Sequence[Event], stage: CanonicalStage) -> int:
    return sum(1 for e in events if e.event_type == EventType.STAGE_CHANGE and e.to_stage == stage)


def grade_stage_confidence(weeks: int, transitions: int, config: EngineConfig = DEFAULT_CONFIG) -> Confidence:
    if weeks >= config.high_confidence_weeks and transitions >= config.high_confidence_transitions:
        return Confidence.HIGH
    if weeks >= config.med_confidence_weeks and transitions >= config.med_confidence_transitions:
        return Confidence.MED
    return Confidence.LOW


def build_stage_throughput(stage: CanonicalStage, transitions: int, weeks: int, prior: float,
                           config: EngineConfig = DEFAULT_CONFIG) -> StageThroughput:
    observed = transitions / weeks
    return StageThroughput(
        stage=stage,
        throughput_per_week=max(0.1, shrink_rate(observed, prior, weeks, config.min_weeks_for_capacity)),
        n_weeks=weeks,
        n_transitions=transitions,
        confidence=grade_stage_confidence(weeks, transitions, config),
        prior_throughput=prior,
        observed_throughput=observed,
    )


def cohort_capacity_defaults(requisitions: Sequence[Requisition], events: Sequence[Event],
                             date_range: DateRange,
                             config: EngineConfig = DEFAULT_CONFIG) -> CohortCapacityDefaults:
    """Per-person weekly rates across the whole team, global priors where unobserved."""
    weeks = weeks_in(date_range)
    in_range = [e for e in events if date_range.contains(e.event_at)]
    reqs = {r.req_id: r for r in requisitions}

    rates = {}
    global_prior_stages = []
    for stage in CAPACITY_LIMITED_STAGES:
        stage_events = [e for e in in_range
                        if e.event_type == EventType.STAGE_CHANGE and e.to_stage == stage]
        if not stage_events:
            rates[stage] = config.global_capacity_priors[stage.value]
            global_prior_stages.append(stage)
            continue

        if STAGE_OWNER[stage] == StageOwner.HM:
            owners = {reqs[e.req_id].hiring_manager_id for e in stage_events if e.req_id in reqs}
        else:
            owners = {reqs[e.req_id].recruiter_id for e in stage_events if e.req_id in reqs}
        owners.discard(None)
        per_person = len(stage_events) / weeks / max(1, len(owners))
        rates[stage] = max(MIN_COHORT_RATES[stage], per_person)

    return CohortCapacityDefaults(rates=rates, weeks_analyzed=weeks,
                                  global_prior_stages=tuple(global_prior_stages))


def _party_stages(req_ids: set, events: Sequence[Event], date_range: DateRange,
                  stages: Sequence[CanonicalStage], cohort: CohortCapacityDefaults,
                  config: EngineConfig) -> Dict[CanonicalStage, StageThroughput]:
    party_events = [e for e in events if e.req_id in req_ids and date_range.contains(e.event_at)]
    weeks = weeks_in(date_range)
    result = {}
    for stage in stages:
        transitions = count_stage_transitions(party_events, stage)
        if transitions > 0:
            result[stage] = build_stage_throughput(stage, transitions, weeks, cohort.rates[stage], config)
    return result


def infer_party_capacity(recruiter_id: Optional[str], hm_id: Optional[str],
                         requisitions: Sequence[Requisition], events: Sequence[Event],
                         date_range: DateRange, config: EngineConfig = DEFAULT_CONFIG,
                         cohort: Optional[CohortCapacityDefaults] = None) -> PartyCapacityProfile:
    """Stage service rates for the recruiter and HM that own a requisition."""
    cohort = cohort or cohort_capacity_defaults(requisitions, events, date_range, config)
    reasons = []

    recruiter_stages: Dict[CanonicalStage, StageThroughput] = {}
    if recruiter_id:
        req_ids = {r.req_id for r in requisitions if r.recruiter_id == recruiter_id}
        recruiter_stages = _party_stages(req_ids, events, date_range, CAPACITY_LIMITED_STAGES, cohort, config)
    else:
        reasons.append("recruiter_id missing; recruiter stages use cohort priors")

    hm_stages: Dict[CanonicalStage, StageThroughput] = {}
    if hm_id:
        req_ids = {r.req_id for r in requisitions if r.hiring_manager_id == hm_id}
        hm_stages = _party_stages(req_ids, events, date_range, [CanonicalStage.HM_SCREEN], cohort, config)
    else:
        reasons.append("hm_id missing; HM stages use cohort priors")

    used_fallback = False
    for stage in CAPACITY_LIMITED_STAGES:
        owner_stages = hm_stages if STAGE_OWNER[stage] == StageOwner.HM else recruiter_stages
        if stage not in owner_stages and stage not in recruiter_stages:
            used_fallback = True
            reasons.append(f"no observed {stage.value} transitions; using cohort prior")

    confidences = [t.confidence for t in recruiter_stages.values()] + [t.confidence for t in hm_stages.values()]
    overall = min_confidence(*confidences)
    if used_fallback:
        overall = min_confidence(overall, Confidence.LOW)

    return PartyCapacityProfile(
        recruiter_id=recruiter_id,
        hm_id=hm_id,
        recruiter_stages=recruiter_stages,
        hm_stages=hm_stages,
        cohort=cohort,
        overall_confidence=overall,
        used_cohort_fallback=used_fallback,
        reasons=tuple(reasons),
    )
