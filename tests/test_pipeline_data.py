"""
Tests for portalscore/services/pipeline_data.py - deal list totals and
archive analytics.
"""
from datetime import datetime, timedelta, timezone

import pytest

from portalscore.models.recommendation import (
    RecommendationCallScore,
    RecommendationCommunication,
    RecommendationInvite,
)
from portalscore.services.pipeline_data import (
    compute_aggregates,
    get_archive_analytics,
    get_pipeline_data,
    get_pipeline_deals,
    summarize_archived,
)

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def _archived(reason, days_open=14, monthly=500.0, onetime=0.0) -> dict:
    return {
        "archive_reason": reason,
        "predicted_monthly": monthly,
        "predicted_onetime": onetime,
        "sent_at": NOW - timedelta(days=days_open),
        "archived_at": NOW,
    }


# ---------------------------------------------------------------------------
# compute_aggregates
# ---------------------------------------------------------------------------

class TestComputeAggregates:
    def test_empty_list_is_all_zero(self):
        assert compute_aggregates([]) == {
            "total_weighted_mrr": 0,
            "total_raw_mrr": 0,
            "total_weighted_onetime": 0,
            "total_raw_onetime": 0,
            "deal_count": 0,
            "avg_confidence": 0,
            "pipeline_confidence_pct": 0,
        }

    def test_unscored_deals_count_toward_raw_only(self):
        deals = [
            {"predicted_monthly": 1000, "predicted_onetime": 500,
             "weighted_monthly": 600, "weighted_onetime": 300, "confidence_score": 60},
            {"predicted_monthly": 1000, "predicted_onetime": 0,
             "weighted_monthly": None, "weighted_onetime": None, "confidence_score": None},
        ]

        result = compute_aggregates(deals)

        assert result["total_weighted_mrr"] == 600
        assert result["total_raw_mrr"] == 2000
        assert result["total_weighted_onetime"] == 300
        assert result["total_raw_onetime"] == 500
        assert result["deal_count"] == 2
        assert result["avg_confidence"] == 60
        assert result["pipeline_confidence_pct"] == 30

    def test_average_rounds_half_up(self):
        deals = [
            {"predicted_monthly": 100, "weighted_monthly": 60, "confidence_score": 60},
            {"predicted_monthly": 100, "weighted_monthly": 75, "confidence_score": 75},
        ]
        result = compute_aggregates(deals)
        assert result["avg_confidence"] == 68
        assert result["pipeline_confidence_pct"] == 68

    def test_zero_raw_mrr_gives_zero_pct(self):
        deals = [{"predicted_monthly": 0, "weighted_monthly": 0, "confidence_score": 90}]
        assert compute_aggregates(deals)["pipeline_confidence_pct"] == 0


# ---------------------------------------------------------------------------
# summarize_archived
# ---------------------------------------------------------------------------

class TestSummarizeArchived:
    def test_counts_and_revenue_by_reason(self):
        deals = [
            _archived("went_dark", onetime=250),
            _archived("went_dark", onetime=250),
            _archived("budget", onetime=150),
            _archived("budget", onetime=150),
            _archived("timing", onetime=200),
        ]

        result = summarize_archived(deals)

        assert result["total_archived"] == 5
        assert result["lost_mrr"] == 2500
        assert result["lost_onetime"] == 1000
        # Ties on count break alphabetically
        assert result["reasons_breakdown"] == [
            {"reason": "budget", "count": 2, "mrr_lost": 1000, "onetime_lost": 300, "percentage": 40},
            {"reason": "went_dark", "count": 2, "mrr_lost": 1000, "onetime_lost": 500, "percentage": 40},
            {"reason": "timing", "count": 1, "mrr_lost": 500, "onetime_lost": 200, "percentage": 20},
        ]

    def test_top_reason(self):
        deals = (
            [_archived("went_dark")] * 4 + [_archived("budget")] * 3 + [_archived("chose_competitor")] * 3
        )
        result = summarize_archived(deals)
        assert result["top_reason"] == "went_dark"
        assert result["top_reason_percentage"] == 40

    def test_percentages_add_up_to_about_100(self):
        deals = [_archived("went_dark")] * 3 + [_archived("budget")] * 3 + [_archived("timing")] * 3
        total = sum(r["percentage"] for r in summarize_archived(deals)["reasons_breakdown"])
        assert 99 <= total <= 102

    def test_avg_days_to_archive_rounds(self):
        deals = [_archived("went_dark", days_open=d) for d in (14, 21, 7, 33)]
        assert summarize_archived(deals)["avg_days_to_archive"] == 19

    def test_deals_without_reason_count_in_totals_only(self):
        deals = [_archived("budget"), _archived(None)]
        result = summarize_archived(deals)
        assert result["total_archived"] == 2
        assert result["reasons_breakdown"][0]["percentage"] == 50
        assert len(result["reasons_breakdown"]) == 1

    def test_missing_sent_at_skipped_in_average(self):
        deals = [_archived("budget", days_open=10), {**_archived("budget"), "sent_at": None}]
        assert summarize_archived(deals)["avg_days_to_archive"] == 10

    def test_nothing_archived(self):
        assert summarize_archived([]) == {
            "total_archived": 0,
            "lost_mrr": 0,
            "lost_onetime": 0,
            "avg_days_to_archive": 0,
            "top_reason": None,
            "top_reason_percentage": 0,
            "reasons_breakdown": [],
        }

    def test_null_revenue_treated_as_zero(self):
        deals = [{**_archived("budget"), "predicted_monthly": None, "predicted_onetime": None}]
        result = summarize_archived(deals)
        assert result["lost_mrr"] == 0
        assert result["lost_onetime"] == 0


# ---------------------------------------------------------------------------
# get_archive_analytics
# ---------------------------------------------------------------------------

class TestGetArchiveAnalytics:
    @pytest.fixture
    async def archived_book(self, make_recommendation):
        await make_recommendation(
            sent_at=NOW - timedelta(days=20), archived_at=NOW - timedelta(days=10), archive_reason="budget",
        )
        await make_recommendation(
            sent_at=NOW - timedelta(days=12), archived_at=NOW - timedelta(days=2), archive_reason="went_dark",
            created_by="other@agency.test", predicted_monthly=400.0,
        )
        # Still open
        await make_recommendation()
        # Drafts never entered the pipeline
        await make_recommendation(
            status="draft", archived_at=NOW - timedelta(days=1), archive_reason="timing",
        )

    async def test_only_archived_pipeline_deals(self, db, archived_book):
        result = await get_archive_analytics(db)

        assert result["total_archived"] == 2
        assert result["lost_mrr"] == 1400
        assert result["lost_onetime"] == 1000
        assert result["avg_days_to_archive"] == 10
        assert [r["reason"] for r in result["reasons_breakdown"]] == ["budget", "went_dark"]

    async def test_archived_after(self, db, archived_book):
        result = await get_archive_analytics(db, archived_after=NOW - timedelta(days=5))
        assert result["total_archived"] == 1
        assert result["top_reason"] == "went_dark"
        assert result["top_reason_percentage"] == 100

    async def test_archived_before(self, db, archived_book):
        result = await get_archive_analytics(db, archived_before=NOW - timedelta(days=5))
        assert result["total_archived"] == 1
        assert result["top_reason"] == "budget"

    async def test_rep_filter(self, db, archived_book):
        result = await get_archive_analytics(db, rep_id="other@agency.test")
        assert result["total_archived"] == 1
        assert result["lost_mrr"] == 400

    async def test_empty_range(self, db, archived_book):
        result = await get_archive_analytics(db, archived_after=NOW + timedelta(days=1))
        assert result["total_archived"] == 0
        assert result["top_reason"] is None


# ---------------------------------------------------------------------------
# get_pipeline_deals / get_pipeline_data
# ---------------------------------------------------------------------------

class TestPipelineDeals:
    @pytest.fixture
    async def deals(self, db, make_recommendation):
        scored = await make_recommendation(
            sent_at=NOW - timedelta(days=20), confidence_score=80,
            weighted_monthly=800.0, weighted_onetime=400.0,
        )
        db.add_all([
            RecommendationCallScore(
                recommendation_id=scored.id, budget_clarity="clear", competition="none",
                engagement="high", plan_fit="strong",
            ),
            RecommendationCommunication(
                recommendation_id=scored.id, direction="outbound", contact_at=NOW - timedelta(hours=6),
            ),
            RecommendationCommunication(
                recommendation_id=scored.id, direction="inbound", contact_at=NOW - timedelta(days=1),
            ),
            RecommendationInvite(
                recommendation_id=scored.id, email="owner@acme.test", sent_at=NOW - timedelta(days=20),
                email_opened_at=NOW - timedelta(days=18),
            ),
            RecommendationInvite(
                recommendation_id=scored.id, email="cfo@acme.test", sent_at=NOW - timedelta(days=20),
                email_opened_at=NOW - timedelta(days=19),
            ),
        ])
        await db.commit()

        unscored = await make_recommendation(predicted_tier="best", created_by="other@agency.test")
        archived = await make_recommendation(archived_at=NOW - timedelta(days=1), archive_reason="budget")
        await make_recommendation(status="accepted", confidence_score=95)
        return {"scored": scored, "unscored": unscored, "archived": archived}

    async def test_active_deals_ordered_by_confidence(self, db, deals):
        result = await get_pipeline_deals(db, now=NOW)

        assert [d["id"] for d in result] == [str(deals["scored"].id), str(deals["unscored"].id)]
        top = result[0]
        assert top["client_name"] == "Acme Dental"
        assert top["age_days"] == 20
        assert top["call_plan_fit"] == "strong"
        assert top["last_communication_at"] == (NOW - timedelta(hours=6)).isoformat()
        assert top["last_inbound_at"] == (NOW - timedelta(days=1)).isoformat()
        assert top["first_email_opened_at"] == (NOW - timedelta(days=19)).isoformat()
        assert top["first_proposal_viewed_at"] is None
        assert result[1]["call_plan_fit"] is None

    async def test_archived_filter(self, db, deals):
        archived = await get_pipeline_deals(db, archived="archived", now=NOW)
        assert [d["id"] for d in archived] == [str(deals["archived"].id)]
        assert len(await get_pipeline_deals(db, archived="all", now=NOW)) == 3

    async def test_rep_and_tier_filters(self, db, deals):
        by_rep = await get_pipeline_deals(db, rep_id="other@agency.test", now=NOW)
        by_tier = await get_pipeline_deals(db, predicted_tier="best", now=NOW)
        assert [d["id"] for d in by_rep] == [str(deals["unscored"].id)]
        assert [d["id"] for d in by_tier] == [str(deals["unscored"].id)]

    async def test_sent_date_filters(self, db, deals):
        recent = await get_pipeline_deals(db, sent_after=NOW - timedelta(days=10), now=NOW)
        older = await get_pipeline_deals(db, sent_before=NOW - timedelta(days=10), now=NOW)
        assert [d["id"] for d in recent] == [str(deals["unscored"].id)]
        assert [d["id"] for d in older] == [str(deals["scored"].id)]

    async def test_invalid_archived_filter(self, db):
        with pytest.raises(ValueError):
            await get_pipeline_deals(db, archived="deleted")

    async def test_pipeline_data_totals_and_reps(self, db, deals):
        result = await get_pipeline_data(db, now=NOW)

        assert len(result["deals"]) == 2
        assert result["aggregates"]["deal_count"] == 2
        assert result["aggregates"]["total_raw_mrr"] == 2000
        assert result["aggregates"]["total_weighted_mrr"] == 800
        assert result["aggregates"]["avg_confidence"] == 80
        assert result["aggregates"]["pipeline_confidence_pct"] == 40
        assert result["reps"] == ["other@agency.test", "rep@agency.test"]
