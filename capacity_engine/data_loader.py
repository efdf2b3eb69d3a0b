"""Snapshot loading and validation for the Recruiter Capacity Engine."""

import json
from collections import Counter
from datetime import datetime, timezone
from typing import Optional, Tuple

from capacity_engine.models import (
    CanonicalStage,
    Candidate,
    Event,
    EventType,
    Requisition,
    Snapshot,
    User,
)


def _timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _stage(value: Optional[str]) -> Optional[CanonicalStage]:
    if not value:
        return None
    return CanonicalStage(value.strip().upper())


def _current_stage(candidate: dict) -> CanonicalStage:
    stage = _stage(candidate.get('current_stage'))
    if stage is None:
        raise ValueError(f"Candidate {candidate['candidate_id']} has no current_stage")
    return stage


def parse_snapshot(requisitions_json: str, candidates_json: str, events_json: str = "[]",
                   users_json: str = "[]") -> Snapshot:
    """Parse uploaded JSON arrays into a Snapshot."""
    requisitions = [
        Requisition(
            req_id=r['req_id'],
            title=r.get('title', ''),
            job_family=r.get('job_family'),
            level=r.get('level'),
            location_type=r.get('location_type'),
            location_city=r.get('location_city'),
            opened_at=_timestamp(r.get('opened_at')),
            closed_at=_timestamp(r.get('closed_at')),
            recruiter_id=r.get('recruiter_id') or None,
            hiring_manager_id=r.get('hiring_manager_id') or None,
        )
        for r in json.loads(requisitions_json)
    ]

    candidates = [
        Candidate(
            candidate_id=c['candidate_id'],
            req_id=c['req_id'],
            current_stage=_current_stage(c),
            stage_entered_at=_timestamp(c.get('stage_entered_at')),
            applied_at=_timestamp(c.get('applied_at')),
            hired_at=_timestamp(c.get('hired_at')),
            offer_extended_at=_timestamp(c.get('offer_extended_at')),
        )
        for c in json.loads(candidates_json)
    ]

    events = [
        Event(
            event_id=e['event_id'],
            event_type=EventType(e['event_type'].strip().upper()),
            req_id=e['req_id'],
            event_at=_timestamp(e['event_at']),
            candidate_id=e.get('candidate_id'),
            actor_id=e.get('actor_id'),
            from_stage=_stage(e.get('from_stage')),
            to_stage=_stage(e.get('to_stage')),
        )
        for e in json.loads(events_json)
    ]

    users = [
        User(user_id=u['user_id'], name=u.get('name', u['user_id']), role=u.get('role'))
        for u in json.loads(users_json)
    ]

    return Snapshot(requisitions=requisitions, candidates=candidates, events=events, users=users)


def validate_data(snapshot: Snapshot) -> Tuple[bool, str]:
    """Validate a parsed snapshot for referential consistency."""
    errors = []
    req_ids = {r.req_id for r in snapshot.requisitions}

    duplicates = sorted(k for k, n in Counter(r.req_id for r in snapshot.requisitions).items() if n > 1)
    if duplicates:
        errors.append(f"Duplicate requisition ids: {', '.join(duplicates)}")

    for cand in snapshot.candidates:
        if cand.req_id not in req_ids:
            errors.append(f"Candidate {cand.candidate_id} references unknown requisition {cand.req_id}")

    for event in snapshot.events:
        if event.req_id not in req_ids:
            errors.append(f"Event {event.event_id} references unknown requisition {event.req_id}")

    for req in snapshot.requisitions:
        if req.opened_at and req.closed_at and req.closed_at < req.opened_at:
            errors.append(f"Requisition {req.req_id} closed before it opened")

    if not snapshot.requisitions:
        errors.append("No requisitions found in uploaded file")

    if errors:
        return False, "\n".join(errors)
    return True, (f"✅ Loaded {len(snapshot.requisitions)} requisitions, {len(snapshot.candidates)} candidates "
                  f"and {len(snapshot.events)} events")
