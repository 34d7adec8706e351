"""
Deal confidence scoring schemas.

ScoringConfig mirrors the JSON stored under settings.pipeline_scoring_config.
Every field has a default, so a missing row, a partial row, or a row with
unknown keys still yields a complete config.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


def _default_mappings() -> dict[str, dict[str, float]]:
    return {
        "budget_clarity": {"clear": 1.0, "vague": 0.5, "none": 0.2, "no_budget": 0.0},
        "competition": {"none": 1.0, "some": 0.5, "many": 0.15},
        "engagement": {"high": 1.0, "medium": 0.55, "low": 0.15},
        "plan_fit": {"strong": 1.0, "medium": 0.6, "weak": 0.25, "poor": 0.0},
    }


class CallWeights(BaseModel):
    budget_clarity: float = 25
    competition: float = 20
    engagement: float = 25
    plan_fit: float = 30


class PenaltyConfig(BaseModel):
    grace_period_hours: Optional[float] = None
    grace_period_days: Optional[float] = None
    daily_penalty: float = 0.0
    max_penalty: float = 0.0
    followup_acceleration_threshold: int = 2
    followup_acceleration_multiplier: float = 1.0

    @property
    def grace_hours_in_days(self) -> float:
        """Email and proposal penalties read the hours setting only."""
        return (self.grace_period_hours or 0.0) / 24

    @property
    def grace_days(self) -> float:
        """The silence penalty reads the days setting only."""
        return self.grace_period_days or 0.0


class Penalties(BaseModel):
    email_not_opened: PenaltyConfig = Field(
        default_factory=lambda: PenaltyConfig(grace_period_hours=24, daily_penalty=2.5, max_penalty=35)
    )
    proposal_not_viewed: PenaltyConfig = Field(
        default_factory=lambda: PenaltyConfig(grace_period_hours=48, daily_penalty=2, max_penalty=25)
    )
    silence: PenaltyConfig = Field(
        default_factory=lambda: PenaltyConfig(grace_period_days=5, daily_penalty=3, max_penalty=80)
    )


class MultiInviteBonus(BaseModel):
    all_opened_bonus: float = 0.0
    all_viewed_bonus: float = 0.0


class ScoringConfig(BaseModel):
    call_weights: CallWeights = Field(default_factory=CallWeights)
    call_score_mappings: dict[str, dict[str, float]] = Field(default_factory=_default_mappings)
    penalties: Penalties = Field(default_factory=Penalties)
    multi_invite_bonus: MultiInviteBonus = Field(default_factory=MultiInviteBonus)
    default_base_score: float = 50


class CallScoreInputs(BaseModel):
    budget_clarity: Optional[str] = None
    competition: Optional[str] = None
    engagement: Optional[str] = None
    plan_fit: Optional[str] = None


class DealFacts(BaseModel):
    id: str
    status: str
    sent_at: Optional[datetime] = None
    revived_at: Optional[datetime] = None
    predicted_monthly: float = 0.0
    predicted_onetime: float = 0.0

    @property
    def scoring_anchor(self) -> Optional[datetime]:
        return self.revived_at or self.sent_at


class InviteMilestones(BaseModel):
    """Earliest timestamp of each milestone across all invites."""
    first_email_opened_at: Optional[datetime] = None
    first_proposal_viewed_at: Optional[datetime] = None
    first_account_created_at: Optional[datetime] = None


class InviteStats(BaseModel):
    total_invites: int = 0
    opened_count: int = 0
    viewed_count: int = 0
    accounts_created_count: int = 0


class CommunicationFacts(BaseModel):
    last_prospect_contact_at: Optional[datetime] = None
    last_team_contact_at: Optional[datetime] = None
    followup_count_since_last_reply: int = 0


class ScoringInput(BaseModel):
    deal: DealFacts
    call_scores: Optional[CallScoreInputs] = None
    milestones: InviteMilestones = Field(default_factory=InviteMilestones)
    invite_stats: InviteStats = Field(default_factory=InviteStats)
    communications: CommunicationFacts = Field(default_factory=CommunicationFacts)
    config: ScoringConfig = Field(default_factory=ScoringConfig)
    now: datetime


class PenaltyBreakdown(BaseModel):
    email_not_opened: float = 0.0
    proposal_not_viewed: float = 0.0
    silence: float = 0.0
    multi_invite_bonus: float = 0.0


class ScoringResult(BaseModel):
    confidence_score: int
    confidence_percent: float
    weighted_monthly: float
    weighted_onetime: float
    base_score: float
    total_penalties: float
    total_bonus: float
    penalty_breakdown: PenaltyBreakdown = Field(default_factory=PenaltyBreakdown)


class BatchResult(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    duration_ms: int = 0
    errors: list[dict] = Field(default_factory=list)

    @property
    def error_rate(self) -> float:
        if self.processed == 0:
            return 0.0
        return self.failed / self.processed
