"""
Deal scoring config loader.

The config lives in the settings table (key: pipeline_scoring_config) so
weights and penalty curves can be tuned without a deploy. It is read on
every calculation; there is no cross-call cache, so an edit takes effect
on the very next score.
"""
import json
import logging
from typing import Any

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portalscore.models.setting import Setting
from portalscore.schemas.scoring import ScoringConfig

logger = logging.getLogger(__name__)

SCORING_CONFIG_KEY = "pipeline_scoring_config"


def _deep_merge(base: dict, override: dict) -> dict:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def parse_scoring_config(raw: Any) -> ScoringConfig:
    """
    Build a ScoringConfig from a stored value, merging it over the defaults.
    Unparseable or invalid values fall back to the defaults entirely.
    """
    if raw is None:
        return ScoringConfig()

    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.error("Failed to parse scoring config, using defaults: %s", str(e))
            return ScoringConfig()

    if not isinstance(raw, dict):
        logger.error("Scoring config is not an object (%s), using defaults", type(raw).__name__)
        return ScoringConfig()

    try:
        return ScoringConfig.model_validate(_deep_merge(ScoringConfig().model_dump(), raw))
    except ValidationError as e:
        logger.error("Invalid scoring config, using defaults: %s", str(e))
        return ScoringConfig()


async def load_scoring_config(db: AsyncSession) -> ScoringConfig:
    result = await db.execute(
        select(Setting.value).where(Setting.key == SCORING_CONFIG_KEY)
    )
    return parse_scoring_config(result.scalar_one_or_none())


async def save_scoring_config(db: AsyncSession, config: dict) -> ScoringConfig:
    """Validate and store a (possibly partial) config. Returns the effective config."""
    effective = ScoringConfig.model_validate(_deep_merge(ScoringConfig().model_dump(), config))
    setting = await db.get(Setting, SCORING_CONFIG_KEY)
    if setting is None:
        db.add(Setting(key=SCORING_CONFIG_KEY, value=effective.model_dump()))
    else:
        setting.value = effective.model_dump()
    await db.flush()
    logger.info("Scoring config updated")
    return effective
