"""
Pytest configuration and shared fixtures.
"""
from datetime import datetime, timedelta

import pytest

from capacity_engine.capacity import CohortCapacityDefaults, PartyCapacityProfile, StageThroughput
from capacity_engine.models import (
    CanonicalStage,
    Candidate,
    Confidence,
    Event,
    EventType,
    FitMatrixCell,
    RecruiterLoadRow,
    Requisition,
    Segment,
    Snapshot,
    User,
    WorkloadComponents,
    WorkloadRecord,
)

# A Wednesday; the current week starts Monday 2024-06-03
AS_OF = datetime(2024, 6, 5, 12, 0)

GLOBAL_PRIORS = {
    CanonicalStage.SCREEN: 10.0,
    CanonicalStage.HM_SCREEN: 4.0,
    CanonicalStage.ONSITE: 3.0,
    CanonicalStage.OFFER: 1.0,
}


def make_req(req_id, recruiter_id="R1", hm_id="H1", opened_days_ago=30, closed=False, **kwargs):
    return Requisition(
        req_id=req_id,
        title=kwargs.pop("title", f"Role {req_id}"),
        opened_at=AS_OF - timedelta(days=opened_days_ago),
        closed_at=AS_OF - timedelta(days=1) if closed else None,
        recruiter_id=recruiter_id,
        hiring_manager_id=hm_id,
        **kwargs,
    )


def make_candidate(candidate_id, req_id, stage=CanonicalStage.APPLIED, **kwargs):
    return Candidate(candidate_id=candidate_id, req_id=req_id, current_stage=stage, **kwargs)


def make_event(event_id, event_type, req_id, event_at, candidate_id=None, to_stage=None):
    return Event(
        event_id=event_id,
        event_type=event_type,
        req_id=req_id,
        event_at=event_at,
        candidate_id=candidate_id,
        to_stage=to_stage,
    )


def make_workload(req_id, recruiter_id, units, segment=None, has_offer_out=False, has_finalist=False):
    return WorkloadRecord(
        req_id=req_id,
        req_title=f"Role {req_id}",
        recruiter_id=recruiter_id,
        workload_units=units,
        components=WorkloadComponents(units, 1.0, 1.0, 1.0),
        age_days=30,
        segment=segment or Segment("Engineering", "Mid", "Hybrid"),
        has_offer_out=has_offer_out,
        has_finalist=has_finalist,
    )


def make_load(recruiter_id, demand, capacity=10.0):
    return RecruiterLoadRow(
        recruiter_id=recruiter_id,
        recruiter_name=f"Recruiter {recruiter_id}",
        demand_wu=demand,
        capacity_wu=capacity,
        utilization=demand / capacity,
        status="",
        top_driver="",
        req_count=0,
        confidence=Confidence.LOW,
    )


def make_cell(recruiter_id, segment, fit_score, sample_size=5):
    return FitMatrixCell(
        recruiter_id=recruiter_id,
        recruiter_name=f"Recruiter {recruiter_id}",
        segment=segment,
        fit_score=fit_score,
        confidence=Confidence.MED,
        sample_size=sample_size,
        metrics=(),
    )


def throughput(stage, rate, confidence=Confidence.HIGH):
    return StageThroughput(
        stage=stage,
        throughput_per_week=rate,
        n_weeks=26,
        n_transitions=40,
        confidence=confidence,
        prior_throughput=rate,
        observed_throughput=rate,
    )


def party_profile(recruiter_stages=None, hm_stages=None, recruiter_id="R1", hm_id="H1"):
    return PartyCapacityProfile(
        recruiter_id=recruiter_id,
        hm_id=hm_id,
        recruiter_stages=recruiter_stages or {},
        hm_stages=hm_stages or {},
        cohort=CohortCapacityDefaults(rates=dict(GLOBAL_PRIORS), weeks_analyzed=26),
        overall_confidence=Confidence.LOW,
        used_cohort_fallback=not recruiter_stages,
    )


@pytest.fixture
def as_of():
    return AS_OF


@pytest.fixture
def empty_snapshot():
    return Snapshot()


@pytest.fixture
def balanced_snapshot():
    """Three recruiters with four open requisitions each and no event history."""
    reqs = []
    candidates = []
    for r in range(1, 4):
        for i in range(4):
            req_id = f"REQ-{r}{i}"
            reqs.append(make_req(req_id, recruiter_id=f"R{r}", hm_id=f"H{r}"))
            candidates.append(make_candidate(f"C-{r}{i}", req_id, CanonicalStage.SCREEN))
    users = [User(user_id=f"R{r}", name=f"Recruiter {r}", role="recruiter") for r in range(1, 4)]
    return Snapshot(requisitions=reqs, candidates=candidates, users=users)


@pytest.fixture
def overloaded_snapshot():
    """R1 carries twelve requisitions, R2 and R3 two each. REQ-00 and REQ-01 have offers out."""
    reqs = [make_req(f"REQ-0{i:x}", recruiter_id="R1") for i in range(12)]
    reqs += [make_req(f"REQ-2{i}", recruiter_id="R2", hm_id="H2") for i in range(2)]
    reqs += [make_req(f"REQ-3{i}", recruiter_id="R3", hm_id="H3") for i in range(2)]
    candidates = [
        make_candidate("C-OFFER-0", "REQ-00", CanonicalStage.OFFER),
        make_candidate("C-OFFER-1", "REQ-01", CanonicalStage.OFFER),
    ]
    return Snapshot(requisitions=reqs, candidates=candidates)


@pytest.fixture
def weekly_events():
    """One stage progression in each of the ten most recent weeks for R1's requisitions."""
    week_start = datetime(2024, 6, 3)
    events = []
    for i in range(10):
        moment = week_start - timedelta(weeks=i) + timedelta(days=1, hours=10)
        events.append(make_event(f"E{i}", EventType.STAGE_CHANGE, f"REQ-{i % 3}", moment,
                                 candidate_id=f"C{i}", to_stage=CanonicalStage.SCREEN))
    return events
