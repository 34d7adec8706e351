"""
Per-plan metric weights for client performance scoring.

Every plan's weights sum to 100. Metrics a client has no data for (or
did not purchase) are dropped and the rest are scaled back up to 100.
"""
import re

METRICS = ("keywords", "visitors", "leads", "ai_visibility", "conversions", "alerts")

PLAN_WEIGHTS: dict[str, dict[str, float]] = {
    "seo": {
        "keywords": 30, "visitors": 20, "leads": 15,
        "ai_visibility": 5, "conversions": 10, "alerts": 20,
    },
    "paid_media": {
        "keywords": 10, "visitors": 15, "leads": 40,
        "ai_visibility": 5, "conversions": 15, "alerts": 15,
    },
    "ai_optimization": {
        "keywords": 10, "visitors": 15, "leads": 15,
        "ai_visibility": 35, "conversions": 10, "alerts": 15,
    },
    "full_service": {
        "keywords": 20, "visitors": 15, "leads": 20,
        "ai_visibility": 15, "conversions": 15, "alerts": 15,
    },
}

DEFAULT_PLAN = "full_service"

ALERT_TYPE_WEIGHTS: dict[str, float] = {
    "lead_increase": 15,
    "ai_alert": 12.5,
    "keyword_ranking": 10,
    "traffic_milestone": 10,
    "campaign_milestone": 7.5,
    "other_update": 5,
}

_SEPARATORS = re.compile(r"[\s-]+")


def normalize_plan_type(plan_type: str | None) -> str:
    """'Paid Media' / 'paid-media' -> 'paid_media'. Unknown or empty -> full_service."""
    if not plan_type:
        return DEFAULT_PLAN
    normalized = _SEPARATORS.sub("_", plan_type.strip().lower())
    return normalized if normalized in PLAN_WEIGHTS else DEFAULT_PLAN


def get_weights_for_plan(plan_type: str | None) -> dict[str, float]:
    return dict(PLAN_WEIGHTS[normalize_plan_type(plan_type)])


def redistribute_weights(weights: dict[str, float], excluded: list[str] | set[str]) -> dict[str, float]:
    """
    Drop excluded metrics and rescale the rest to sum to 100.
    All excluded -> {}. Remaining weights of zero -> equal split.
    """
    remaining = {metric: w for metric, w in weights.items() if metric not in excluded}
    if not remaining:
        return {}

    remaining_total = sum(remaining.values())
    if remaining_total <= 0:
        equal = 100 / len(remaining)
        return {metric: equal for metric in remaining}

    scale = 100 / remaining_total
    return {metric: w * scale for metric, w in remaining.items()}
