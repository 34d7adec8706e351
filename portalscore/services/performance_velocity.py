"""
Improvement velocity for client performance scoring.

velocity = improvements / months_active, compared with the plan's expected
monthly improvements. New clients inside their plan's ramp window are
never penalized or boosted.
"""
from portalscore.services.performance_stages import get_months_active
from portalscore.services.performance_weights import normalize_plan_type

# Expected improvements per month
EXPECTED_VELOCITY: dict[str, float] = {
    "seo": 3,
    "paid_media": 2,
    "ai_optimization": 1,
    "full_service": 4,
}

RAMP_PERIOD_DAYS: dict[str, int] = {
    "seo": 90,
    "paid_media": 30,
    "ai_optimization": 60,
    "full_service": 90,
}

# (minimum ratio, modifier), checked in order
VELOCITY_MODIFIERS = (
    (1.5, 1.15),
    (1.0, 1.0),
    (0.5, 0.85),
)
STAGNANT_MODIFIER = 0.70


def get_expected_velocity(plan_type: str | None) -> float:
    return EXPECTED_VELOCITY[normalize_plan_type(plan_type)]


def get_ramp_period_days(plan_type: str | None) -> int:
    return RAMP_PERIOD_DAYS[normalize_plan_type(plan_type)]


def is_in_ramp_period(days_active: int, plan_type: str | None) -> bool:
    return days_active < get_ramp_period_days(plan_type)


def calculate_velocity(improvements: int, months_active: int) -> float:
    if months_active <= 0:
        return 0.0
    return improvements / months_active


def get_velocity_modifier(velocity: float, expected: float, in_ramp_period: bool) -> float:
    if in_ramp_period or expected <= 0:
        return 1.0
    ratio = velocity / expected
    for min_ratio, modifier in VELOCITY_MODIFIERS:
        if ratio >= min_ratio:
            return modifier
    return STAGNANT_MODIFIER


def calculate_velocity_result(improvements: int, days_active: int, plan_type: str | None) -> dict:
    plan = normalize_plan_type(plan_type)
    months_active = get_months_active(days_active)
    velocity = calculate_velocity(improvements, months_active)
    expected = get_expected_velocity(plan)
    in_ramp = is_in_ramp_period(days_active, plan)

    return {
        "improvements_total": improvements,
        "months_active": months_active,
        "velocity": velocity,
        "expected": expected,
        "ratio": velocity / expected if expected > 0 else 0.0,
        "modifier": get_velocity_modifier(velocity, expected, in_ramp),
        "is_in_ramp_period": in_ramp,
        "plan_type": plan,
    }
