"""
Assembles the ScoringInput for one recommendation from the fact tables.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portalscore.models.recommendation import (
    Recommendation,
    RecommendationCallScore,
    RecommendationCommunication,
    RecommendationInvite,
)
from portalscore.schemas.scoring import (
    CallScoreInputs,
    CommunicationFacts,
    DealFacts,
    InviteMilestones,
    InviteStats,
    ScoringInput,
)
from portalscore.services.scoring_config import load_scoring_config
from portalscore.utils.scoring_math import ensure_utc, utcnow

logger = logging.getLogger(__name__)


def _earliest(values: list[Optional[datetime]]) -> Optional[datetime]:
    present = [ensure_utc(v) for v in values if v is not None]
    return min(present) if present else None


def summarize_invites(invites: list) -> tuple[InviteMilestones, InviteStats]:
    milestones = InviteMilestones(
        first_email_opened_at=_earliest([i.email_opened_at for i in invites]),
        first_proposal_viewed_at=_earliest([i.viewed_at for i in invites]),
        first_account_created_at=_earliest([i.account_created_at for i in invites]),
    )
    stats = InviteStats(
        total_invites=len(invites),
        opened_count=sum(1 for i in invites if i.email_opened_at),
        viewed_count=sum(1 for i in invites if i.viewed_at),
        accounts_created_count=sum(1 for i in invites if i.account_created_at),
    )
    return milestones, stats


def summarize_communications(comms: list) -> CommunicationFacts:
    inbound = [ensure_utc(c.contact_at) for c in comms if c.direction == "inbound"]
    outbound = [ensure_utc(c.contact_at) for c in comms if c.direction == "outbound"]

    last_inbound = max(inbound) if inbound else None
    last_outbound = max(outbound) if outbound else None

    if last_inbound is None:
        followups = len(outbound)
    else:
        followups = sum(1 for t in outbound if t > last_inbound)

    return CommunicationFacts(
        last_prospect_contact_at=last_inbound,
        last_team_contact_at=last_outbound,
        followup_count_since_last_reply=followups,
    )


async def assemble_scoring_input(
    db: AsyncSession,
    recommendation: Recommendation,
    now: Optional[datetime] = None,
) -> ScoringInput:
    rec_id = recommendation.id

    call_row = (await db.execute(
        select(RecommendationCallScore).where(RecommendationCallScore.recommendation_id == rec_id)
    )).scalar_one_or_none()

    invites = (await db.execute(
        select(RecommendationInvite).where(RecommendationInvite.recommendation_id == rec_id)
    )).scalars().all()

    comms = (await db.execute(
        select(RecommendationCommunication).where(
            RecommendationCommunication.recommendation_id == rec_id
        )
    )).scalars().all()

    config = await load_scoring_config(db)
    milestones, stats = summarize_invites(list(invites))

    call_scores = None
    if call_row is not None:
        call_scores = CallScoreInputs(
            budget_clarity=call_row.budget_clarity,
            competition=call_row.competition,
            engagement=call_row.engagement,
            plan_fit=call_row.plan_fit,
        )

    return ScoringInput(
        deal=DealFacts(
            id=str(rec_id),
            status=recommendation.status or "draft",
            sent_at=ensure_utc(recommendation.sent_at),
            revived_at=ensure_utc(recommendation.revived_at),
            predicted_monthly=float(recommendation.predicted_monthly or 0),
            predicted_onetime=float(recommendation.predicted_onetime or 0),
        ),
        call_scores=call_scores,
        milestones=milestones,
        invite_stats=stats,
        communications=summarize_communications(list(comms)),
        config=config,
        now=now or utcnow(),
    )
