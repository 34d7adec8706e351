"""
Tests for portalscore/services/score_audit.py - score timeline and run-to-run deltas.
"""
from datetime import datetime, timedelta, timezone

from portalscore.services.recalculate import recalculate_score
from portalscore.services.score_audit import compute_deltas, get_score_audit, get_score_history

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def _event(score, weighted, silence, base=50):
    return {
        "confidence_score": score,
        "weighted_monthly": weighted,
        "breakdown": {"base_score": base, "total_bonus": 0, "penalty_breakdown": {"silence": silence}},
    }


class TestComputeDeltas:
    def test_reports_changed_fields_only(self):
        deltas = compute_deltas(_event(60, 600.0, 0.0), _event(54, 540.0, 6.0))
        assert deltas["score_delta"] == -6
        assert deltas["weighted_mrr_delta"] == -60.0
        assert deltas["changes"] == [{"field": "penalty_silence", "from": 0.0, "to": 6.0, "delta": 6.0}]

    def test_missing_breakdown(self):
        previous = {"confidence_score": 50, "weighted_monthly": 500.0}
        deltas = compute_deltas(previous, _event(55, 550.0, 0.0))
        assert deltas["score_delta"] == 5
        assert deltas["changes"] == []


class TestScoreAudit:
    async def test_timeline_and_audit(self, db, make_recommendation):
        rec = await make_recommendation(sent_at=NOW - timedelta(days=3))
        await recalculate_score(db, rec.id, "daily_cron", now=NOW)
        await recalculate_score(db, rec.id, "daily_cron", now=NOW + timedelta(days=1))
        await db.commit()

        history = await get_score_history(db, rec.id)
        assert [h["confidence_score"] for h in history] == [45, 43]
        assert history[0]["trigger_source"] == "daily_cron"

        audit = await get_score_audit(db, rec.id)
        assert "deltas" not in audit[0]
        assert audit[1]["deltas"]["score_delta"] == -2
        fields = [c["field"] for c in audit[1]["deltas"]["changes"]]
        assert fields == ["penalty_email_not_opened"]

    async def test_empty_history(self, db, make_recommendation):
        rec = await make_recommendation()
        assert await get_score_history(db, rec.id) == []
        assert await get_score_audit(db, rec.id) == []
