"""
Unit tests for sustainable capacity and stage service-rate inference.
"""
from datetime import datetime, timedelta

import pytest

from capacity_engine.capacity import (
    cohort_capacity_defaults,
    default_date_range,
    grade_stage_confidence,
    infer_all_capacities,
    infer_capacity,
    infer_party_capacity,
    summarize_weeks,
    week_windows,
)
from capacity_engine.config import DEFAULT_CONFIG
from capacity_engine.models import CanonicalStage, Confidence, EventType, User
from tests.conftest import AS_OF, make_event, make_req


@pytest.fixture
def recruiter_reqs():
    return [make_req(f"REQ-{i}", recruiter_id="R1", opened_days_ago=200) for i in range(3)]


class TestWeekWindows:
    """Tests for trailing week partitioning."""

    @pytest.mark.unit
    def test_weeks_start_on_monday(self):
        windows = week_windows(AS_OF, 3)

        assert windows[0] == (datetime(2024, 6, 3), datetime(2024, 6, 10))
        assert windows[2][0] == datetime(2024, 5, 20)

    @pytest.mark.unit
    def test_invalid_window(self):
        with pytest.raises(ValueError):
            week_windows(AS_OF, 0)


class TestInferCapacity:
    """Tests for sustainable WU/week inference."""

    @pytest.mark.unit
    def test_falls_back_to_team_median(self, recruiter_reqs):
        """Without enough stable weeks the team median is used exactly."""
        profile = infer_capacity("R1", recruiter_reqs, [], as_of=AS_OF, team_median=7.5)

        assert profile.sustainable_wu_per_week == 7.5
        assert profile.used_team_median is True
        assert profile.observed_wu_per_week is None
        assert profile.confidence == Confidence.INSUFFICIENT

    @pytest.mark.unit
    def test_fallback_without_team_median_uses_default(self, recruiter_reqs):
        profile = infer_capacity("R1", recruiter_reqs, [], as_of=AS_OF)

        assert profile.sustainable_wu_per_week == DEFAULT_CONFIG.default_team_capacity_wu
        assert profile.used_team_median is True

    @pytest.mark.unit
    def test_observed_capacity_from_stable_weeks(self, recruiter_reqs, weekly_events):
        profile = infer_capacity("R1", recruiter_reqs, weekly_events, as_of=AS_OF, team_median=99.0)

        assert profile.stable_weeks_count == 10
        assert profile.used_team_median is False
        assert profile.confidence == Confidence.LOW
        assert profile.sustainable_wu_per_week == profile.observed_wu_per_week
        assert 0 < profile.sustainable_wu_per_week < 99.0

    @pytest.mark.unit
    def test_hire_weeks_are_excluded(self, recruiter_reqs, weekly_events):
        hire = make_event("H1", EventType.OFFER_ACCEPTED, "REQ-0", datetime(2024, 6, 4, 15), candidate_id="C0")

        profile = infer_capacity("R1", recruiter_reqs, weekly_events + [hire], as_of=AS_OF)

        assert profile.stable_weeks_count == 9

    @pytest.mark.unit
    def test_weeks_with_few_open_reqs_are_unstable(self, weekly_events):
        reqs = [make_req("REQ-0", recruiter_id="R1", opened_days_ago=200)]

        weeks = summarize_weeks("R1", reqs, weekly_events, as_of=AS_OF)

        assert len(weeks) == DEFAULT_CONFIG.weeks_back
        assert not any(w.is_stable() for w in weeks)

    @pytest.mark.unit
    def test_all_capacities_share_team_median(self, recruiter_reqs, weekly_events):
        reqs = recruiter_reqs + [make_req("REQ-9", recruiter_id="R2", opened_days_ago=200)]
        users = [User("R1", "Ada"), User("R2", "Grace")]

        profiles = infer_all_capacities(reqs, weekly_events, users, as_of=AS_OF)

        assert [p.recruiter_id for p in profiles] == ["R1", "R2"]
        assert profiles[1].recruiter_name == "Grace"
        assert profiles[1].used_team_median is True
        # R2 never has a stable week, so the pooled median is R1's own
        assert profiles[1].sustainable_wu_per_week == pytest.approx(profiles[0].observed_wu_per_week)


class TestStageServiceRates:
    """Tests for per-stage throughput used by the congestion model."""

    @pytest.mark.unit
    @pytest.mark.parametrize("weeks,transitions,expected", [
        (8, 15, Confidence.HIGH),
        (26, 40, Confidence.HIGH),
        (4, 5, Confidence.MED),
        (8, 10, Confidence.MED),
        (2, 1, Confidence.LOW),
        (26, 3, Confidence.LOW),
    ])
    def test_grade_stage_confidence(self, weeks, transitions, expected):
        assert grade_stage_confidence(weeks, transitions) == expected

    @pytest.mark.unit
    def test_no_events_uses_global_priors(self, recruiter_reqs):
        date_range = default_date_range(AS_OF)
        profile = infer_party_capacity("R1", "H1", recruiter_reqs, [], date_range)

        rate = profile.service_rate(CanonicalStage.SCREEN)
        assert rate.uses_prior is True
        assert rate.rate == DEFAULT_CONFIG.global_capacity_priors["SCREEN"]
        assert rate.confidence == Confidence.LOW
        assert profile.used_cohort_fallback is True
        assert profile.overall_confidence == Confidence.LOW

    @pytest.mark.unit
    def test_missing_ids_are_reported(self, recruiter_reqs):
        profile = infer_party_capacity(None, None, recruiter_reqs, [], default_date_range(AS_OF))

        assert any("recruiter_id missing" in r for r in profile.reasons)
        assert any("hm_id missing" in r for r in profile.reasons)

    @pytest.mark.unit
    def test_observed_screen_rate(self, recruiter_reqs, weekly_events):
        profile = infer_party_capacity("R1", "H1", recruiter_reqs, weekly_events, default_date_range(AS_OF))

        rate = profile.service_rate(CanonicalStage.SCREEN)
        assert rate.uses_prior is False
        assert rate.rate > 0
        assert profile.service_rate(CanonicalStage.OFFER).uses_prior is True

    @pytest.mark.unit
    def test_cohort_rates_respect_floor(self, recruiter_reqs):
        event = make_event("E1", EventType.STAGE_CHANGE, "REQ-0", AS_OF - timedelta(days=3),
                           candidate_id="C1", to_stage=CanonicalStage.OFFER)

        cohort = cohort_capacity_defaults(recruiter_reqs, [event], default_date_range(AS_OF))

        assert cohort.rates[CanonicalStage.OFFER] == 0.25
        assert CanonicalStage.OFFER not in cohort.global_prior_stages
        assert CanonicalStage.SCREEN in cohort.global_prior_stages
