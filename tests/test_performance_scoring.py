"""
Tests for the client performance helpers - point conversion, weights,
growth stages and velocity.
"""
import math
from datetime import date, datetime, timedelta, timezone

import pytest

from portalscore.services.performance_score import (
    calculate_alerts_score,
    calculate_base_score,
    calculate_delta,
    calculate_final_score,
    delta_to_points,
)
from portalscore.services.performance_stages import (
    get_days_since,
    get_evaluation_label,
    get_growth_stage,
    get_months_active,
    get_score_status,
    get_stage_flags,
    is_above_expectation,
    is_below_expectation,
)
from portalscore.services.performance_velocity import (
    calculate_velocity,
    calculate_velocity_result,
    get_velocity_modifier,
    is_in_ramp_period,
)
from portalscore.services.performance_weights import (
    METRICS,
    PLAN_WEIGHTS,
    get_weights_for_plan,
    normalize_plan_type,
    redistribute_weights,
)

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Points and deltas
# ---------------------------------------------------------------------------

class TestDeltaToPoints:
    def test_zero_is_fifty(self):
        assert delta_to_points(0) == 50

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_non_finite_is_fifty(self, value):
        assert delta_to_points(value) == 50

    def test_clamped(self):
        assert delta_to_points(500) == 100
        assert delta_to_points(-500) == 0

    def test_rounds_half_up(self):
        assert delta_to_points(12.5) == 63

    def test_always_in_range(self):
        for d in range(-300, 301, 7):
            assert 0 <= delta_to_points(d) <= 100

    def test_huge_deltas(self):
        assert delta_to_points(1e30) == 100
        assert delta_to_points(-1e30) == 0


class TestCalculateDelta:
    def test_percent_change(self):
        assert calculate_delta(120, 100) == pytest.approx(20)

    def test_lower_is_better_inverts(self):
        # Average position 10 -> 8 is an improvement
        assert calculate_delta(8, 10, lower_is_better=True) == pytest.approx(20)

    def test_zero_baseline_with_growth(self):
        assert calculate_delta(5, 0) == 25

    def test_zero_baseline_without_growth(self):
        assert calculate_delta(0, 0) == 0


class TestAlertsScore:
    def test_empty(self):
        assert calculate_alerts_score([]) == 0

    def test_weighted_sum_doubled(self):
        alerts = [{"type": "lead_increase", "count": 1}, {"type": "keyword_ranking", "count": 2}]
        assert calculate_alerts_score(alerts) == 70

    def test_unknown_type_and_missing_count(self):
        assert calculate_alerts_score([{"type": "mystery"}]) == 10

    def test_capped(self):
        assert calculate_alerts_score([{"type": "lead_increase", "count": 10}]) == 100


class TestBaseAndFinal:
    def test_weighted_average(self):
        scores = {"keywords": {"score": 80}, "visitors": {"score": 40}}
        assert calculate_base_score(scores, {"keywords": 50, "visitors": 50}) == pytest.approx(60)

    def test_renormalizes_missing_metrics(self):
        scores = {"keywords": {"score": 80}}
        assert calculate_base_score(scores, {"keywords": 30, "visitors": 20}) == pytest.approx(80)

    def test_final_applies_modifier(self):
        assert calculate_final_score(60, 1.15) == 69
        assert calculate_final_score(95, 1.15) == 100

    def test_final_huge_base_is_capped(self):
        assert calculate_final_score(1e30, 1.15) == 100


# ---------------------------------------------------------------------------
# Weights
# ---------------------------------------------------------------------------

class TestWeights:
    def test_every_plan_sums_to_100(self):
        for plan, weights in PLAN_WEIGHTS.items():
            assert sum(weights.values()) == pytest.approx(100), plan
            assert set(weights) == set(METRICS)

    @pytest.mark.parametrize("raw,expected", [
        ("Paid Media", "paid_media"),
        ("paid-media", "paid_media"),
        ("  SEO ", "seo"),
        ("AI Optimization", "ai_optimization"),
        ("enterprise", "full_service"),
        (None, "full_service"),
    ])
    def test_normalize_plan_type(self, raw, expected):
        assert normalize_plan_type(raw) == expected

    def test_weights_are_a_copy(self):
        weights = get_weights_for_plan("seo")
        weights["keywords"] = 0
        assert PLAN_WEIGHTS["seo"]["keywords"] == 30

    def test_redistribute_all_excluded(self):
        assert redistribute_weights(get_weights_for_plan("seo"), list(METRICS)) == {}

    def test_redistribute_subset_sums_to_100(self):
        result = redistribute_weights(get_weights_for_plan("paid_media"), ["leads", "alerts"])
        assert set(result) == {"keywords", "visitors", "ai_visibility", "conversions"}
        assert sum(result.values()) == pytest.approx(100)
        assert result["visitors"] == pytest.approx(15 * 100 / 45)

    def test_redistribute_zero_weights_split_equally(self):
        result = redistribute_weights({"a": 0, "b": 0, "c": 100}, ["c"])
        assert result == {"a": 50, "b": 50}


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

class TestStages:
    @pytest.mark.parametrize("days,stage", [
        (0, "seedling"), (89, "seedling"), (90, "sprouting"), (179, "sprouting"),
        (180, "blooming"), (364, "blooming"), (365, "harvesting"), (2000, "harvesting"),
    ])
    def test_growth_stage_boundaries(self, days, stage):
        assert get_growth_stage(days) == stage

    def test_days_since_date_and_datetime(self):
        assert get_days_since(date(2026, 3, 5), NOW) == 10
        assert get_days_since(NOW - timedelta(days=3, hours=1), NOW) == 3
        assert get_days_since(None, NOW) == 0

    def test_months_active_minimum_one(self):
        assert get_months_active(0) == 1
        assert get_months_active(95) == 3

    def test_evaluation_labels(self):
        assert get_evaluation_label(85, "seedling") == "Exceptional Start"
        assert get_evaluation_label(50, "blooming") == "Needs Attention"
        assert get_evaluation_label(10, "harvesting") == "Likely Lost"

    def test_score_status(self):
        assert get_score_status(80)["status"] == "Thriving"
        assert get_score_status(79)["hex"] == "#22c55e"
        assert get_score_status(0)["key"] == "critical"

    def test_expectations(self):
        assert is_below_expectation(55, "blooming")
        assert is_above_expectation(91, "harvesting")
        assert not is_below_expectation(40, "seedling")

    def test_flags(self):
        assert [f["flag"] for f in get_stage_flags(15, "harvesting")] == ["Critical", "Churn Risk"]
        assert [f["flag"] for f in get_stage_flags(85, "harvesting")] == ["Premium Candidate"]
        assert [f["flag"] for f in get_stage_flags(35, "blooming")] == ["Problem Account"]
        assert [f["flag"] for f in get_stage_flags(82, "sprouting")] == ["Fast Tracker"]
        assert get_stage_flags(60, "seedling") == []


# ---------------------------------------------------------------------------
# Velocity
# ---------------------------------------------------------------------------

class TestVelocity:
    def test_velocity(self):
        assert calculate_velocity(12, 3) == 4
        assert calculate_velocity(5, 0) == 0

    def test_ramp_period_per_plan(self):
        assert is_in_ramp_period(29, "paid_media")
        assert not is_in_ramp_period(30, "paid_media")
        assert is_in_ramp_period(89, "seo")

    @pytest.mark.parametrize("velocity,expected,modifier", [
        (4.5, 3, 1.15),
        (3, 3, 1.0),
        (1.5, 3, 0.85),
        (1, 3, 0.70),
        (0, 0, 1.0),
    ])
    def test_modifier_bands(self, velocity, expected, modifier):
        assert get_velocity_modifier(velocity, expected, False) == modifier

    def test_ramp_period_neutral(self):
        assert get_velocity_modifier(0, 4, True) == 1.0

    def test_result(self):
        result = calculate_velocity_result(6, 200, "SEO")
        assert result["months_active"] == 6
        assert result["velocity"] == 1
        assert result["expected"] == 3
        assert result["modifier"] == 0.70
        assert result["is_in_ramp_period"] is False
        assert result["plan_type"] == "seo"
