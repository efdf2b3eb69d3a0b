"""Configuration for the Recruiter Capacity Engine."""

from dataclasses import dataclass, field, fields, replace
from types import MappingProxyType
from typing import Mapping, Tuple

DAYS_PER_WEEK = 7
HOURS_PER_DAY = 24

DEFAULT_WEEKS_BACK = 26
MAX_QUEUE_DELAY_DAYS = 30.0
DEFAULT_QUEUE_FACTOR = 1.0

METRIC_NAMES = ("hires_per_wu", "ttf_days", "offer_accept_rate", "candidate_throughput")


class ConfigurationError(ValueError):
    """Raised when an EngineConfig violates its contract."""
    pass


def _frozen(mapping) -> Mapping:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class EngineConfig:
    version: str = "1.0.0"

    # Base difficulty tables
    level_weights: Mapping[str, float] = field(default_factory=lambda: {
        "L1": 0.8, "L2": 0.9, "L3": 1.0, "L4": 1.1, "L5": 1.2, "L6": 1.35, "L7": 1.5,
        "IC1": 0.8, "IC2": 0.9, "IC3": 1.0, "IC4": 1.1, "IC5": 1.2, "IC6": 1.35,
        "M1": 1.3, "M2": 1.4, "Director": 1.5, "VP": 1.7,
    })
    market_weights: Mapping[str, float] = field(default_factory=lambda: {
        "Remote": 0.9, "Hybrid": 1.0, "Onsite": 1.1,
    })
    hard_market_bonus: float = 0.2
    hard_markets: Tuple[str, ...] = ("San Francisco", "New York", "Seattle", "Boston")
    niche_weights: Mapping[str, float] = field(default_factory=lambda: {
        "Engineering": 1.2, "Data": 1.2, "Security": 1.3, "Product": 1.1,
        "Design": 1.0, "Sales": 0.9, "G&A": 0.9, "Support": 0.8,
    })

    # Remaining-work progress of the furthest-advanced candidate
    stage_progress: Mapping[str, float] = field(default_factory=lambda: {
        "LEAD": 0.1, "APPLIED": 0.1, "SCREEN": 0.3, "HM_SCREEN": 0.4,
        "ONSITE": 0.6, "FINAL": 0.8, "OFFER": 0.9, "HIRED": 0.95,
    })

    aging_scale_days: float = 90.0
    aging_scale_factor: float = 0.3
    aging_cap: float = 1.6

    # HM friction
    min_loops_for_hm_weight: int = 3
    max_friction_multiplier: float = 1.3

    # Sustainable capacity
    weeks_back: int = DEFAULT_WEEKS_BACK
    min_stable_weeks: int = 8
    min_open_reqs_for_stable_week: int = 3
    default_team_capacity_wu: float = 10.0

    # Fit scoring
    shrinkage_k: float = 5.0
    min_fit_cell_samples: int = 3
    metric_min_samples: Mapping[str, int] = field(default_factory=lambda: {
        "hires_per_wu": 3, "ttf_days": 3, "offer_accept_rate": 3, "candidate_throughput": 3,
    })
    metric_weights: Mapping[str, float] = field(default_factory=lambda: {
        "hires_per_wu": 0.40, "ttf_days": 0.25, "offer_accept_rate": 0.20, "candidate_throughput": 0.15,
    })
    cohort_defaults: Mapping[str, float] = field(default_factory=lambda: {
        "hires_per_wu": 0.5, "ttf_days": 45.0, "offer_accept_rate": 0.8, "candidate_throughput": 5.0,
    })

    # Congestion model
    max_queue_delay_days: float = MAX_QUEUE_DELAY_DAYS
    queue_factor: float = DEFAULT_QUEUE_FACTOR
    target_utilization: float = 0.9
    global_capacity_priors: Mapping[str, float] = field(default_factory=lambda: {
        "SCREEN": 10.0, "HM_SCREEN": 4.0, "ONSITE": 3.0, "OFFER": 1.0,
    })
    stage_durations: Mapping[str, Tuple[float, float]] = field(default_factory=lambda: {
        # (gamma shape, gamma scale) in days
        "SCREEN": (2.5, 2.0), "HM_SCREEN": (2.0, 3.5), "ONSITE": (2.5, 4.0), "OFFER": (4.0, 1.25),
    })
    min_weeks_for_capacity: int = 4
    min_transitions_for_throughput: int = 5
    high_confidence_weeks: int = 8
    high_confidence_transitions: int = 15
    med_confidence_weeks: int = 4
    med_confidence_transitions: int = 5

    # Load status thresholds
    utilization_critical: float = 1.2
    utilization_overloaded: float = 1.1
    utilization_balanced_low: float = 0.9
    utilization_available: float = 0.7

    # Rebalance optimizer
    max_dest_utilization_after_move: float = 1.05
    min_source_relief: float = 0.05
    max_inbound_moves_per_target: int = 2
    max_candidate_reqs_per_source: int = 25
    min_fit_for_assignment: float = -0.2
    max_recommendations: int = 5

    # Global gates
    min_recruiters_for_team: int = 3
    min_reqs_for_analysis: int = 10
    min_recruiter_id_coverage: float = 0.5

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, dict):
                object.__setattr__(self, f.name, _frozen(value))
        object.__setattr__(self, "hard_markets", tuple(self.hard_markets))
        self._validate()

    def _validate(self):
        errors = []

        if not self.version:
            errors.append("version must be a non-empty string")

        missing = [m for m in METRIC_NAMES if m not in self.metric_weights]
        if missing:
            errors.append(f"metric_weights missing {', '.join(missing)}")
        elif abs(sum(self.metric_weights[m] for m in METRIC_NAMES) - 1.0) > 1e-9:
            errors.append("metric_weights must sum to 1.0")

        missing = [m for m in METRIC_NAMES if m not in self.metric_min_samples]
        if missing:
            errors.append(f"metric_min_samples missing {', '.join(missing)}")
        missing = [m for m in METRIC_NAMES if m not in self.cohort_defaults]
        if missing:
            errors.append(f"cohort_defaults missing {', '.join(missing)}")

        for table in ("level_weights", "market_weights", "niche_weights"):
            bad = [k for k, v in getattr(self, table).items() if v <= 0]
            if bad:
                errors.append(f"{table} must be positive (bad keys: {', '.join(sorted(bad))})")

        bad = [k for k, v in self.stage_progress.items() if not 0.0 <= v < 1.0]
        if bad:
            errors.append(f"stage_progress must lie in [0, 1) (bad keys: {', '.join(sorted(bad))})")

        for stage, params in self.stage_durations.items():
            if len(params) != 2 or params[0] <= 0 or params[1] <= 0:
                errors.append(f"stage_durations[{stage}] must be a positive (shape, scale) pair")

        if self.aging_cap < 1.0:
            errors.append("aging_cap must be >= 1.0")
        if self.max_friction_multiplier < 1.0:
            errors.append("max_friction_multiplier must be >= 1.0")

        positive = (
            "aging_scale_days", "shrinkage_k", "min_stable_weeks", "min_fit_cell_samples",
            "weeks_back", "default_team_capacity_wu", "max_queue_delay_days", "queue_factor",
            "target_utilization", "max_dest_utilization_after_move", "min_reqs_for_analysis",
            "min_recruiters_for_team", "max_candidate_reqs_per_source",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be positive")

        if not 0.0 <= self.min_recruiter_id_coverage <= 1.0:
            errors.append("min_recruiter_id_coverage must lie in [0, 1]")

        if errors:
            raise ConfigurationError("Invalid engine configuration: " + "; ".join(errors))

    def with_overrides(self, **changes) -> "EngineConfig":
        """Return a validated copy with the given fields replaced."""
        return replace(self, **changes)


DEFAULT_CONFIG = EngineConfig()
