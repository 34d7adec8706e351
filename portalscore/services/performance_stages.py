"""
Growth stages, score status bands and stage flags for client performance.

Stages are tenure based, half-open intervals in days:
seedling [0, 90), sprouting [90, 180), blooming [180, 365), harvesting [365, inf).
"""
from datetime import date, datetime
from typing import Optional, Union

from portalscore.utils.scoring_math import ensure_utc, utcnow

STAGE_ORDER = ("seedling", "sprouting", "blooming", "harvesting")

STAGE_CONFIGS: dict[str, dict] = {
    "seedling": {
        "label": "Seedling", "icon": "\U0001f331", "min_days": 0, "max_days": 90,
        "expected_score_range": (40, 60),
        "description": "Ramp-up period, foundation building",
    },
    "sprouting": {
        "label": "Sprouting", "icon": "\U0001f33f", "min_days": 90, "max_days": 180,
        "expected_score_range": (50, 70),
        "description": "Early results appearing",
    },
    "blooming": {
        "label": "Blooming", "icon": "\U0001f338", "min_days": 180, "max_days": 365,
        "expected_score_range": (60, 80),
        "description": "Multi-metric growth expected",
    },
    "harvesting": {
        "label": "Harvesting", "icon": "\U0001f33e", "min_days": 365, "max_days": None,
        "expected_score_range": (70, 90),
        "description": "Mature, stable, expansion-ready",
    },
}

# Labels per stage for score bands 80+, 60-79, 40-59, 20-39, 0-19
STAGE_EVALUATION_LABELS: dict[str, tuple[str, str, str, str, str]] = {
    "seedling": ("Exceptional Start", "Strong Start", "Normal Ramp", "Slow Start", "Stalled Launch"),
    "sprouting": ("Fast Tracker", "Ahead of Schedule", "Normal Growth", "Behind Schedule", "Failing"),
    "blooming": ("Star Client", "On Track", "Needs Attention", "At Risk", "Critical"),
    "harvesting": ("Ideal / Premium Candidate", "Stable", "Declining", "Churn Risk", "Likely Lost"),
}

SCORE_STATUSES = (
    {"status": "Thriving", "key": "thriving", "hex": "#16a34a", "min_score": 80, "max_score": 100},
    {"status": "Healthy", "key": "healthy", "hex": "#22c55e", "min_score": 60, "max_score": 79},
    {"status": "Needs Attention", "key": "needs_attention", "hex": "#eab308", "min_score": 40, "max_score": 59},
    {"status": "At Risk", "key": "at_risk", "hex": "#f97316", "min_score": 20, "max_score": 39},
    {"status": "Critical", "key": "critical", "hex": "#dc2626", "min_score": 0, "max_score": 19},
)

_BAND_FLOORS = (80, 60, 40, 20)


def get_days_since(start: Union[date, datetime, None], now: Optional[datetime] = None) -> int:
    if start is None:
        return 0
    now = ensure_utc(now) if now else utcnow()
    if isinstance(start, datetime):
        delta = now - ensure_utc(start)
        return int(delta.total_seconds() // 86400)
    return (now.date() - start).days


def get_months_active(days: int) -> int:
    return max(1, days // 30)


def get_growth_stage(days: int) -> str:
    if days < 90:
        return "seedling"
    if days < 180:
        return "sprouting"
    if days < 365:
        return "blooming"
    return "harvesting"


def _band_index(score: float) -> int:
    for index, floor in enumerate(_BAND_FLOORS):
        if score >= floor:
            return index
    return len(_BAND_FLOORS)


def get_evaluation_label(score: float, stage: str) -> str:
    return STAGE_EVALUATION_LABELS[stage][_band_index(score)]


def get_score_status(score: float) -> dict:
    return SCORE_STATUSES[_band_index(score)]


def is_below_expectation(score: float, stage: str) -> bool:
    return score < STAGE_CONFIGS[stage]["expected_score_range"][0]


def is_above_expectation(score: float, stage: str) -> bool:
    return score > STAGE_CONFIGS[stage]["expected_score_range"][1]


def get_stage_flags(score: float, stage: str) -> list[dict]:
    flags = []

    if score < 20:
        flags.append({
            "flag": "Critical", "icon": "\U0001f534",
            "action": "All hands on deck", "priority": "critical",
        })

    if stage == "harvesting":
        if score < 40:
            flags.append({
                "flag": "Churn Risk", "icon": "\U0001f6a8",
                "action": "Immediate intervention", "priority": "critical",
            })
        elif score >= 80:
            flags.append({
                "flag": "Premium Candidate", "icon": "⭐",
                "action": "Offer premium services", "priority": "low",
            })

    if stage == "blooming" and score < 40:
        flags.append({
            "flag": "Problem Account", "icon": "⚠️",
            "action": "Strategy review", "priority": "high",
        })

    if stage == "sprouting" and score >= 80:
        flags.append({
            "flag": "Fast Tracker", "icon": "\U0001f680",
            "action": "Upsell candidate", "priority": "low",
        })

    return flags
