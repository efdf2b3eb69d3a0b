"""
Unit tests for snapshot parsing and validation.
"""
import json
from datetime import datetime

import pytest

from capacity_engine.analysis import analyze_capacity
from capacity_engine.data_loader import parse_snapshot, validate_data
from capacity_engine.models import CanonicalStage, EventType

REQUISITIONS = json.dumps([
    {"req_id": "Q1", "title": "Backend Engineer", "level": "L5", "job_family": "Engineering",
     "location_type": "Remote", "opened_at": "2024-03-01", "recruiter_id": "R1", "hiring_manager_id": "H1"},
    {"req_id": "Q2", "title": "Account Executive", "opened_at": "2024-02-01T09:30:00",
     "closed_at": "2024-05-01", "recruiter_id": ""},
])
CANDIDATES = json.dumps([
    {"candidate_id": "C1", "req_id": "Q1", "current_stage": "hm_screen", "applied_at": "2024-03-05"},
])
EVENTS = json.dumps([
    {"event_id": "E1", "event_type": "stage_change", "req_id": "Q1", "event_at": "2024-03-10T14:00:00",
     "candidate_id": "C1", "to_stage": "HM_SCREEN"},
])
USERS = json.dumps([{"user_id": "R1", "name": "Ada", "role": "recruiter"}])


class TestParseSnapshot:
    """Tests for parse_snapshot."""

    @pytest.mark.unit
    def test_parses_all_collections(self):
        snapshot = parse_snapshot(REQUISITIONS, CANDIDATES, EVENTS, USERS)

        assert [r.req_id for r in snapshot.requisitions] == ["Q1", "Q2"]
        assert snapshot.requisitions[0].opened_at == datetime(2024, 3, 1)
        assert snapshot.requisitions[1].opened_at == datetime(2024, 2, 1, 9, 30)
        assert snapshot.requisitions[1].recruiter_id is None
        assert not snapshot.requisitions[1].is_open
        assert snapshot.candidates[0].current_stage == CanonicalStage.HM_SCREEN
        assert snapshot.events[0].event_type == EventType.STAGE_CHANGE
        assert snapshot.user_names() == {"R1": "Ada"}

    @pytest.mark.unit
    def test_events_and_users_optional(self):
        snapshot = parse_snapshot(REQUISITIONS, CANDIDATES)

        assert snapshot.events == ()
        assert snapshot.users == ()

    @pytest.mark.unit
    def test_unknown_stage_raises(self):
        bad = json.dumps([{"candidate_id": "C1", "req_id": "Q1", "current_stage": "PHONE"}])

        with pytest.raises(ValueError):
            parse_snapshot(REQUISITIONS, bad)

    @pytest.mark.unit
    def test_offset_timestamps_normalized_to_utc(self):
        reqs = json.dumps([
            {"req_id": f"Q{i}", "opened_at": "2024-05-01T09:00:00+02:00", "recruiter_id": f"R{i % 3}"}
            for i in range(12)
        ])
        cands = json.dumps([
            {"candidate_id": "C1", "req_id": "Q0", "current_stage": "SCREEN",
             "applied_at": "2024-05-02T00:30:00+00:00"},
        ])

        snapshot = parse_snapshot(reqs, cands)

        assert snapshot.requisitions[0].opened_at == datetime(2024, 5, 1, 7, 0)
        assert snapshot.requisitions[0].opened_at.tzinfo is None
        assert snapshot.candidates[0].applied_at == datetime(2024, 5, 2, 0, 30)

        result = analyze_capacity(snapshot)
        assert result.blocked is False
        assert len(result.req_workloads) == 12

    @pytest.mark.unit
    @pytest.mark.parametrize("stage", ["", None])
    def test_missing_candidate_stage_raises(self, stage):
        bad = json.dumps([{"candidate_id": "C7", "req_id": "Q1", "current_stage": stage}])

        with pytest.raises(ValueError, match="C7"):
            parse_snapshot(REQUISITIONS, bad)

    @pytest.mark.unit
    def test_missing_event_stages_allowed(self):
        events = json.dumps([
            {"event_id": "E2", "event_type": "OFFER_ACCEPTED", "req_id": "Q1", "event_at": "2024-03-20"},
        ])

        snapshot = parse_snapshot(REQUISITIONS, CANDIDATES, events)

        assert snapshot.events[0].to_stage is None

    @pytest.mark.unit
    def test_malformed_json_raises(self):
        with pytest.raises(json.JSONDecodeError):
            parse_snapshot("[{", CANDIDATES)


class TestValidateData:
    """Tests for validate_data."""

    @pytest.mark.unit
    def test_valid_snapshot(self):
        ok, message = validate_data(parse_snapshot(REQUISITIONS, CANDIDATES, EVENTS))

        assert ok is True
        assert "2 requisitions" in message

    @pytest.mark.unit
    def test_dangling_references(self):
        candidates = json.dumps([{"candidate_id": "C9", "req_id": "Q9", "current_stage": "SCREEN"}])

        ok, message = validate_data(parse_snapshot(REQUISITIONS, candidates))

        assert ok is False
        assert "C9" in message

    @pytest.mark.unit
    def test_empty_snapshot(self):
        ok, message = validate_data(parse_snapshot("[]", "[]"))

        assert ok is False
        assert "No requisitions" in message
