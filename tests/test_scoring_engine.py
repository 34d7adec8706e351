"""
Tests for portalscore/services/scoring_engine.py - the pure deal confidence engine.
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from portalscore.schemas.scoring import (
    CallScoreInputs,
    CommunicationFacts,
    DealFacts,
    InviteMilestones,
    InviteStats,
    MultiInviteBonus,
    PenaltyConfig,
    ScoringConfig,
    ScoringInput,
)
from portalscore.services.scoring_engine import (
    build_breakdown,
    compute_base_score,
    compute_email_not_opened_penalty,
    compute_multi_invite_bonus,
    compute_pipeline_score,
    compute_proposal_not_viewed_penalty,
    compute_silence_penalty,
    decay_penalty,
)

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

BEST_CALL = CallScoreInputs(budget_clarity="clear", competition="none", engagement="high", plan_fit="strong")


def _input(status="sent", sent_days_ago=0.0, call_scores=BEST_CALL, **kwargs) -> ScoringInput:
    deal_kwargs = {
        "id": str(uuid.uuid4()),
        "status": status,
        "sent_at": NOW - timedelta(days=sent_days_ago),
        "predicted_monthly": kwargs.pop("predicted_monthly", 1000.0),
        "predicted_onetime": kwargs.pop("predicted_onetime", 500.0),
        "revived_at": kwargs.pop("revived_at", None),
    }
    return ScoringInput(deal=DealFacts(**deal_kwargs), call_scores=call_scores, now=NOW, **kwargs)


# ---------------------------------------------------------------------------
# Base score
# ---------------------------------------------------------------------------

class TestBaseScore:
    def test_best_answers_score_100(self):
        assert compute_base_score(BEST_CALL, ScoringConfig()) == pytest.approx(100)

    def test_no_call_scores_uses_default(self):
        assert compute_base_score(None, ScoringConfig()) == 50

    def test_mixed_answers(self):
        call = CallScoreInputs(budget_clarity="vague", competition="some", engagement="medium", plan_fit="medium")
        # 0.5*25 + 0.5*20 + 0.55*25 + 0.6*30
        assert compute_base_score(call, ScoringConfig()) == pytest.approx(54.25)

    def test_unknown_value_contributes_zero(self):
        call = CallScoreInputs(budget_clarity="clear", competition="unheard_of", engagement=None, plan_fit="strong")
        assert compute_base_score(call, ScoringConfig()) == pytest.approx(55)


# ---------------------------------------------------------------------------
# Penalty curves
# ---------------------------------------------------------------------------

class TestDecayPenalty:
    def test_zero_within_grace(self):
        assert decay_penalty(0.9, 1.0, 2.5, 35) == 0.0
        assert decay_penalty(1.0, 1.0, 2.5, 35) == 0.0

    def test_linear_after_grace(self):
        assert decay_penalty(3.0, 1.0, 2.5, 35) == pytest.approx(5.0)

    def test_fractional_days(self):
        assert decay_penalty(1.5, 1.0, 2.0, 25) == pytest.approx(1.0)

    def test_capped(self):
        assert decay_penalty(400, 1.0, 2.5, 35) == 35

    def test_monotonic(self):
        values = [decay_penalty(d / 4, 2.0, 3.0, 80) for d in range(0, 200)]
        assert values == sorted(values)


class TestEmailNotOpenedPenalty:
    config = PenaltyConfig(grace_period_hours=24, daily_penalty=2.5, max_penalty=35)

    def test_no_penalty_once_opened(self):
        milestones = InviteMilestones(first_email_opened_at=NOW - timedelta(days=1))
        assert compute_email_not_opened_penalty(NOW - timedelta(days=10), milestones, self.config, NOW) == 0

    def test_no_penalty_without_anchor(self):
        assert compute_email_not_opened_penalty(None, InviteMilestones(), self.config, NOW) == 0

    def test_grows_after_grace(self):
        penalty = compute_email_not_opened_penalty(NOW - timedelta(days=5), InviteMilestones(), self.config, NOW)
        assert penalty == pytest.approx(10.0)

    def test_days_setting_does_not_extend_grace(self):
        config = PenaltyConfig(grace_period_hours=24, grace_period_days=10, daily_penalty=2.5, max_penalty=35)
        penalty = compute_email_not_opened_penalty(NOW - timedelta(days=5), InviteMilestones(), config, NOW)
        assert penalty == pytest.approx(10.0)


class TestProposalNotViewedPenalty:
    config = PenaltyConfig(grace_period_hours=48, daily_penalty=2, max_penalty=25)

    def test_zero_before_engagement(self):
        assert compute_proposal_not_viewed_penalty(InviteMilestones(), self.config, NOW) == 0

    def test_counts_from_earliest_engagement(self):
        milestones = InviteMilestones(
            first_email_opened_at=NOW - timedelta(days=6),
            first_account_created_at=NOW - timedelta(days=3),
        )
        assert compute_proposal_not_viewed_penalty(milestones, self.config, NOW) == pytest.approx(8.0)

    def test_zero_once_viewed(self):
        milestones = InviteMilestones(
            first_email_opened_at=NOW - timedelta(days=20),
            first_proposal_viewed_at=NOW - timedelta(days=1),
        )
        assert compute_proposal_not_viewed_penalty(milestones, self.config, NOW) == 0

    def test_days_setting_does_not_extend_grace(self):
        config = PenaltyConfig(grace_period_hours=48, grace_period_days=30, daily_penalty=2, max_penalty=25)
        milestones = InviteMilestones(first_email_opened_at=NOW - timedelta(days=6))
        assert compute_proposal_not_viewed_penalty(milestones, config, NOW) == pytest.approx(8.0)


class TestSilencePenalty:
    config = PenaltyConfig(grace_period_days=5, daily_penalty=3, max_penalty=80,
                           followup_acceleration_threshold=2, followup_acceleration_multiplier=1.5)

    def test_anchor_when_prospect_never_replied(self):
        penalty = compute_silence_penalty(NOW - timedelta(days=7), CommunicationFacts(), self.config, NOW)
        assert penalty == pytest.approx(6.0)

    def test_last_reply_resets_clock(self):
        comms = CommunicationFacts(last_prospect_contact_at=NOW - timedelta(days=2))
        assert compute_silence_penalty(NOW - timedelta(days=30), comms, self.config, NOW) == 0

    def test_followups_accelerate(self):
        comms = CommunicationFacts(followup_count_since_last_reply=2)
        penalty = compute_silence_penalty(NOW - timedelta(days=7), comms, self.config, NOW)
        assert penalty == pytest.approx(9.0)

    def test_default_multiplier_is_neutral(self):
        config = PenaltyConfig(grace_period_days=5, daily_penalty=3, max_penalty=80)
        comms = CommunicationFacts(followup_count_since_last_reply=5)
        assert compute_silence_penalty(NOW - timedelta(days=7), comms, config, NOW) == pytest.approx(6.0)

    def test_hours_setting_ignored(self):
        config = PenaltyConfig(grace_period_hours=1, grace_period_days=5, daily_penalty=3, max_penalty=80)
        assert compute_silence_penalty(NOW - timedelta(days=7), CommunicationFacts(), config, NOW) == pytest.approx(6.0)


class TestMultiInviteBonus:
    config = ScoringConfig(multi_invite_bonus=MultiInviteBonus(all_opened_bonus=5, all_viewed_bonus=3))

    def test_single_invite_gets_nothing(self):
        stats = InviteStats(total_invites=1, opened_count=1, viewed_count=1)
        assert compute_multi_invite_bonus(stats, self.config) == 0

    def test_all_opened_and_viewed(self):
        stats = InviteStats(total_invites=3, opened_count=3, viewed_count=3)
        assert compute_multi_invite_bonus(stats, self.config) == 8

    def test_partial_opens(self):
        stats = InviteStats(total_invites=3, opened_count=2, viewed_count=0)
        assert compute_multi_invite_bonus(stats, self.config) == 0

    def test_defaults_to_zero(self):
        stats = InviteStats(total_invites=3, opened_count=3, viewed_count=3)
        assert compute_multi_invite_bonus(stats, ScoringConfig()) == 0


# ---------------------------------------------------------------------------
# Full pipeline score
# ---------------------------------------------------------------------------

class TestComputePipelineScore:
    def test_fresh_deal_with_best_call(self):
        result = compute_pipeline_score(_input())
        assert result.confidence_score == 100
        assert result.confidence_percent == 1.0
        assert result.weighted_monthly == 1000.0
        assert result.weighted_onetime == 500.0
        assert result.total_penalties == 0

    def test_closed_lost_is_zero(self):
        result = compute_pipeline_score(_input(status="closed_lost", sent_days_ago=3))
        assert result.confidence_score == 0
        assert result.weighted_monthly == 0

    def test_accepted_is_hundred(self):
        result = compute_pipeline_score(_input(status="accepted", call_scores=None, sent_days_ago=90))
        assert result.confidence_score == 100
        assert result.weighted_monthly == 1000.0

    def test_draft_gets_base_only(self):
        result = compute_pipeline_score(_input(status="draft", call_scores=None, sent_days_ago=60))
        assert result.confidence_score == 50
        assert result.confidence_percent == 0.5
        assert result.total_penalties == 0

    def test_penalties_reduce_score(self):
        # 10 days, never opened: email 22.5, silence 15
        result = compute_pipeline_score(_input(sent_days_ago=10))
        assert result.penalty_breakdown.email_not_opened == pytest.approx(22.5)
        assert result.penalty_breakdown.silence == pytest.approx(15.0)
        assert result.total_penalties == pytest.approx(37.5)
        # 100 - 37.5 = 62.5 rounds half up
        assert result.confidence_score == 63
        assert result.confidence_percent == 0.63
        assert result.weighted_monthly == 630.0

    def test_score_never_negative(self):
        result = compute_pipeline_score(_input(sent_days_ago=365, call_scores=None))
        assert result.confidence_score == 0
        assert result.weighted_monthly == 0

    def test_revival_resets_clock(self):
        stale = compute_pipeline_score(_input(sent_days_ago=60))
        revived = compute_pipeline_score(_input(sent_days_ago=60, revived_at=NOW - timedelta(hours=2)))
        assert revived.confidence_score > stale.confidence_score
        assert revived.confidence_score == 100

    def test_deterministic(self):
        data = _input(sent_days_ago=8)
        assert compute_pipeline_score(data) == compute_pipeline_score(data)

    def test_breakdown_is_json_ready(self):
        breakdown = build_breakdown(compute_pipeline_score(_input(sent_days_ago=10)))
        assert breakdown["penalty_breakdown"]["silence"] == pytest.approx(15.0)
        assert breakdown["confidence_score"] == 63
