"""
Deal confidence scoring engine - pure functions, no I/O.

Flow for an active deal (sent/declined):
1. Base score from the rep's call assessment (or the configured default)
2. Penalties: email not opened, proposal not viewed, prospect silence
3. Multi-invite bonus
4. final = round(clamp(base - penalties + bonus, 0, 100))
5. Weighted revenue = predicted revenue x confidence_percent

Time always comes from ScoringInput.now so results are deterministic.
"""
from datetime import datetime
from typing import Optional

from portalscore.schemas.scoring import (
    CallScoreInputs,
    CommunicationFacts,
    InviteMilestones,
    InviteStats,
    PenaltyBreakdown,
    PenaltyConfig,
    ScoringConfig,
    ScoringInput,
    ScoringResult,
)
from portalscore.utils.scoring_math import clamp, days_between, round2, round_int

CALL_SCORE_FIELDS = ("budget_clarity", "competition", "engagement", "plan_fit")


def compute_base_score(call_scores: Optional[CallScoreInputs], config: ScoringConfig) -> float:
    """Sum of mapping[field][value] x weight[field]. Unknown values contribute 0."""
    if call_scores is None:
        return config.default_base_score

    total = 0.0
    for field in CALL_SCORE_FIELDS:
        value = getattr(call_scores, field)
        factor = config.call_score_mappings.get(field, {}).get(value, 0.0) if value else 0.0
        total += factor * getattr(config.call_weights, field)
    return total


def decay_penalty(elapsed_days: float, grace_days: float, daily_rate: float, cap: float) -> float:
    """0 up to the grace period, then linear per fractional day, capped."""
    if elapsed_days <= grace_days:
        return 0.0
    return max(0.0, min((elapsed_days - grace_days) * daily_rate, cap))


def compute_email_not_opened_penalty(
    anchor: Optional[datetime],
    milestones: InviteMilestones,
    config: PenaltyConfig,
    now: datetime,
) -> float:
    if milestones.first_email_opened_at or anchor is None:
        return 0.0
    return decay_penalty(
        days_between(anchor, now), config.grace_hours_in_days, config.daily_penalty, config.max_penalty,
    )


def compute_proposal_not_viewed_penalty(
    milestones: InviteMilestones,
    config: PenaltyConfig,
    now: datetime,
) -> float:
    """Starts once the prospect has engaged (opened or signed up) but not viewed."""
    if milestones.first_proposal_viewed_at:
        return 0.0
    engaged = [
        t for t in (milestones.first_email_opened_at, milestones.first_account_created_at) if t
    ]
    if not engaged:
        return 0.0
    return decay_penalty(
        days_between(min(engaged), now), config.grace_hours_in_days, config.daily_penalty, config.max_penalty,
    )


def compute_silence_penalty(
    anchor: Optional[datetime],
    communications: CommunicationFacts,
    config: PenaltyConfig,
    now: datetime,
) -> float:
    if anchor is None:
        return 0.0
    silent_since = communications.last_prospect_contact_at or anchor

    rate = config.daily_penalty
    if communications.followup_count_since_last_reply >= config.followup_acceleration_threshold:
        rate *= config.followup_acceleration_multiplier

    return decay_penalty(days_between(silent_since, now), config.grace_days, rate, config.max_penalty)


def compute_multi_invite_bonus(stats: InviteStats, config: ScoringConfig) -> float:
    if stats.total_invites <= 1:
        return 0.0
    bonus = 0.0
    if stats.opened_count >= stats.total_invites:
        bonus += config.multi_invite_bonus.all_opened_bonus
    if stats.viewed_count >= stats.total_invites:
        bonus += config.multi_invite_bonus.all_viewed_bonus
    return bonus


def _result(
    score: int,
    predicted_monthly: float,
    predicted_onetime: float,
    base: float,
    breakdown: Optional[PenaltyBreakdown] = None,
) -> ScoringResult:
    breakdown = breakdown or PenaltyBreakdown()
    percent = round2(score / 100)
    total_penalties = (
        breakdown.email_not_opened + breakdown.proposal_not_viewed + breakdown.silence
    )
    return ScoringResult(
        confidence_score=score,
        confidence_percent=percent,
        weighted_monthly=round2(predicted_monthly * percent),
        weighted_onetime=round2(predicted_onetime * percent),
        base_score=round_int(base),
        total_penalties=round2(total_penalties),
        total_bonus=round2(breakdown.multi_invite_bonus),
        penalty_breakdown=breakdown,
    )


def compute_pipeline_score(data: ScoringInput) -> ScoringResult:
    deal = data.deal
    config = data.config

    if deal.status == "closed_lost":
        return _result(0, deal.predicted_monthly, deal.predicted_onetime, 0)
    if deal.status == "accepted":
        return _result(100, deal.predicted_monthly, deal.predicted_onetime, 100)

    base = compute_base_score(data.call_scores, config)

    # Drafts have not been sent, so nothing has had a chance to decay
    if deal.status == "draft":
        return _result(round_int(clamp(base)), deal.predicted_monthly, deal.predicted_onetime, base)

    anchor = deal.scoring_anchor
    email = compute_email_not_opened_penalty(
        anchor, data.milestones, config.penalties.email_not_opened, data.now,
    )
    viewed = compute_proposal_not_viewed_penalty(
        data.milestones, config.penalties.proposal_not_viewed, data.now,
    )
    silence = compute_silence_penalty(
        anchor, data.communications, config.penalties.silence, data.now,
    )
    bonus = compute_multi_invite_bonus(data.invite_stats, config)

    score = round_int(clamp(base - (email + viewed + silence) + bonus))
    breakdown = PenaltyBreakdown(
        email_not_opened=round2(email),
        proposal_not_viewed=round2(viewed),
        silence=round2(silence),
        multi_invite_bonus=round2(bonus),
    )
    return _result(score, deal.predicted_monthly, deal.predicted_onetime, base, breakdown)


def build_breakdown(result: ScoringResult) -> dict:
    """JSON stored alongside each history row."""
    return result.model_dump()
