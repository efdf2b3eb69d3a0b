"""
Unit tests for recruiter x segment fit scoring.
"""
from datetime import timedelta

import pytest

from capacity_engine.fit import (
    SegmentMetrics,
    build_fit_matrix,
    cohort_benchmarks,
    combine_fit_score,
    fit_label,
    get_fit_score,
    metric_residuals,
    rank_fit_cells,
    relative_residual,
)
from capacity_engine.models import CanonicalStage, Confidence, Segment
from tests.conftest import AS_OF, make_candidate, make_cell, make_req

SEGMENT = Segment("Engineering", "Mid", "Hybrid")


def segment_history(recruiter_id, n_reqs, ttf_days=40):
    """Requisitions with one hire and one onsite candidate each."""
    reqs = []
    candidates = []
    for i in range(n_reqs):
        req_id = f"{recruiter_id}-Q{i}"
        reqs.append(make_req(req_id, recruiter_id=recruiter_id, opened_days_ago=100,
                             job_family="Engineering", level="L4", location_type="Hybrid"))
        candidates.append(make_candidate(
            f"{req_id}-hire", req_id, CanonicalStage.HIRED,
            applied_at=AS_OF - timedelta(days=ttf_days + 10),
            hired_at=AS_OF - timedelta(days=10),
        ))
        candidates.append(make_candidate(f"{req_id}-onsite", req_id, CanonicalStage.ONSITE))
    return reqs, candidates


def metrics(**overrides):
    values = dict(
        recruiter_id="R1",
        segment=SEGMENT,
        req_count=10,
        segment_wu=10.0,
        hires=5,
        ttf_days=(30.0,) * 10,
        offers_extended=10,
        offers_accepted=8,
        candidates_advanced=20,
        weeks_active=10.0,
    )
    values.update(overrides)
    return SegmentMetrics(**values)


class TestResiduals:
    """Tests for residual computation."""

    @pytest.mark.unit
    @pytest.mark.parametrize("observed,expected,result", [
        (1.5, 1.0, 0.5),
        (3.0, 1.0, 1.0),
        (0.0, 2.0, -1.0),
        (0.0, 0.0, 0.0),
    ])
    def test_relative_residual_is_clipped(self, observed, expected, result):
        assert relative_residual(observed, expected) == pytest.approx(result)

    @pytest.mark.unit
    def test_faster_time_to_fill_helps(self):
        """Time-to-fill is sign-inverted: below the cohort is a positive contribution."""
        benchmarks = cohort_benchmarks([metrics(ttf_days=(40.0,) * 10)])
        residuals = metric_residuals(metrics(ttf_days=(20.0,) * 10), benchmarks)

        ttf = next(r for r in residuals if r.metric == "ttf_days")
        assert ttf.relative_residual == pytest.approx(-0.5)
        assert ttf.adjusted_residual == pytest.approx(-0.5 * 10 / 15)
        assert ttf.contribution > 0

    @pytest.mark.unit
    def test_empty_cohort_uses_defaults(self):
        benchmarks = cohort_benchmarks([])

        assert benchmarks["ttf_days"] == (45.0, True)


class TestCombineFitScore:
    """Tests for the weighted fit score."""

    @pytest.mark.unit
    def test_null_when_any_metric_undersampled(self):
        """Plenty of data elsewhere does not rescue an undersampled metric."""
        sample = metrics(offers_extended=2, offers_accepted=2)
        residuals = metric_residuals(sample, cohort_benchmarks([metrics()]))

        assert combine_fit_score(residuals) is None

    @pytest.mark.unit
    def test_null_when_metric_unobservable(self):
        sample = metrics(ttf_days=())
        residuals = metric_residuals(sample, cohort_benchmarks([metrics()]))

        assert combine_fit_score(residuals) is None

    @pytest.mark.unit
    def test_matching_cohort_scores_zero(self):
        residuals = metric_residuals(metrics(), cohort_benchmarks([metrics()]))

        assert combine_fit_score(residuals) == pytest.approx(0.0)

    @pytest.mark.unit
    def test_score_within_unit_interval(self):
        strong = metrics(hires=10, ttf_days=(10.0,) * 10, offers_accepted=10, candidates_advanced=60)
        residuals = metric_residuals(strong, cohort_benchmarks([metrics()]))

        assert 0 < combine_fit_score(residuals) <= 1.0

    @pytest.mark.unit
    @pytest.mark.parametrize("score,label", [
        (0.5, "Strong Fit"), (0.2, "Good Fit"), (0.0, "Neutral"), (-0.2, "Weak Fit"), (-0.5, "Poor Fit"),
    ])
    def test_fit_label(self, score, label):
        assert fit_label(score) == label


class TestBuildFitMatrix:
    """Tests for the sparse fit matrix."""

    @pytest.mark.unit
    def test_identical_recruiters_tie_break_by_id(self):
        reqs_2, cands_2 = segment_history("R2", 3)
        reqs_1, cands_1 = segment_history("R1", 3)

        matrix = build_fit_matrix(reqs_2 + reqs_1, cands_2 + cands_1, as_of=AS_OF)

        assert [c.recruiter_id for c in matrix] == ["R1", "R2"]
        assert all(c.fit_score == pytest.approx(0.0) for c in matrix)
        assert matrix[0].segment == SEGMENT
        assert matrix[0].confidence == Confidence.LOW

    @pytest.mark.unit
    def test_equal_scores_rank_larger_sample_first(self):
        other = Segment("Sales", "Mid", "Remote")
        cells = [
            make_cell("R1", SEGMENT, 0.2, sample_size=3),
            make_cell("R2", SEGMENT, 0.2, sample_size=8),
            make_cell("R3", other, 0.5, sample_size=3),
            make_cell("R0", other, 0.2, sample_size=3),
        ]

        ranked = rank_fit_cells(cells)

        assert [(c.recruiter_id, c.sample_size) for c in ranked] == [("R3", 3), ("R2", 8), ("R0", 3), ("R1", 3)]

    @pytest.mark.unit
    def test_undersampled_cells_are_omitted(self):
        reqs_1, cands_1 = segment_history("R1", 3)
        reqs_2, cands_2 = segment_history("R2", 1)

        matrix = build_fit_matrix(reqs_1 + reqs_2, cands_1 + cands_2, as_of=AS_OF)

        assert [c.recruiter_id for c in matrix] == ["R1"]
        assert get_fit_score(matrix, "R2", SEGMENT) is None

    @pytest.mark.unit
    def test_faster_recruiter_ranks_first(self):
        reqs_1, cands_1 = segment_history("R1", 4, ttf_days=60)
        reqs_2, cands_2 = segment_history("R2", 4, ttf_days=20)

        matrix = build_fit_matrix(reqs_1 + reqs_2, cands_1 + cands_2, as_of=AS_OF)

        assert matrix[0].recruiter_id == "R2"
        assert matrix[0].fit_score > 0 > matrix[1].fit_score
        assert matrix[0].metric("ttf_days").observed == pytest.approx(20.0)

    @pytest.mark.unit
    def test_empty_input(self):
        assert build_fit_matrix([], [], as_of=AS_OF) == []
