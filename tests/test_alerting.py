"""
Tests for portalscore/utils/alerting.py - cooldowns (Redis and in-memory
fallback) and webhook formatting.
"""
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from portalscore.utils import alerting
from portalscore.utils.alerting import AlertType, send_alert


@pytest.fixture(autouse=True)
def _clear_local_cooldowns():
    alerting._local_cooldowns.clear()
    yield
    alerting._local_cooldowns.clear()


def _mock_http_client():
    mock_client = AsyncMock()
    mock_client.post = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    return mock_client


# ---------------------------------------------------------------------------
# Cooldowns
# ---------------------------------------------------------------------------

class TestAcquireCooldown:
    async def test_redis_set_nx_with_override(self, mock_redis):
        acquired = await alerting._acquire_cooldown(AlertType.PIPELINE_SCORING_TIMEOUT)

        assert acquired is True
        mock_redis.set.assert_awaited_once_with(
            "portalscore:alert_cooldown:pipeline_scoring_timeout", "1", nx=True, ex=3600,
        )

    async def test_redis_key_already_held(self, mock_redis):
        mock_redis.set = AsyncMock(return_value=None)
        assert await alerting._acquire_cooldown(AlertType.PIPELINE_SCORING_FAILED) is False

    async def test_default_cooldown(self, mock_redis):
        await alerting._acquire_cooldown(AlertType.PERFORMANCE_REFRESH_FAILED)
        assert mock_redis.set.call_args.kwargs["ex"] == 300

    async def test_in_memory_fallback_when_redis_down(self):
        with patch(
            "portalscore.utils.redis.get_redis",
            new_callable=AsyncMock,
            side_effect=ConnectionError("redis down"),
        ):
            first = await alerting._acquire_cooldown("fallback_test")
            second = await alerting._acquire_cooldown("fallback_test")

        assert first is True
        assert second is False


# ---------------------------------------------------------------------------
# send_alert
# ---------------------------------------------------------------------------

class TestSendAlert:
    async def test_suppressed_during_cooldown(self):
        with (
            patch("portalscore.utils.alerting._acquire_cooldown", new_callable=AsyncMock, return_value=False),
            patch("portalscore.utils.alerting._send_webhook_alert", new_callable=AsyncMock) as mock_webhook,
        ):
            await send_alert(AlertType.PIPELINE_SCORING_FAILED, "sweep crashed")

        mock_webhook.assert_not_awaited()

    async def test_logs_and_posts(self, caplog):
        with (
            patch("portalscore.utils.alerting._acquire_cooldown", new_callable=AsyncMock, return_value=True),
            patch("portalscore.utils.alerting._send_webhook_alert", new_callable=AsyncMock) as mock_webhook,
            caplog.at_level(logging.ERROR, logger="portalscore.utils.alerting"),
        ):
            await send_alert(
                AlertType.PIPELINE_SCORING_HIGH_ERROR_RATE,
                "40% of deals failed",
                correlation_id="run-123",
                severity="critical",
                extra={"failed": 4},
            )

        assert "ALERT [pipeline_scoring_high_error_rate]" in caplog.text
        assert "run-123" in caplog.text
        assert caplog.records[-1].levelno == logging.CRITICAL
        mock_webhook.assert_awaited_once_with(
            "pipeline_scoring_high_error_rate", "40% of deals failed", "critical", "run-123", {"failed": 4},
        )


# ---------------------------------------------------------------------------
# Webhook channel
# ---------------------------------------------------------------------------

class TestSendWebhookAlert:
    async def test_content_includes_correlation_and_extra(self):
        mock_settings = MagicMock()
        mock_settings.alert_webhook_url = "https://hooks.example.com/alerts"
        mock_client = _mock_http_client()

        with (
            patch("portalscore.config.get_settings", return_value=mock_settings),
            patch("httpx.AsyncClient", return_value=mock_client),
        ):
            await alerting._send_webhook_alert(
                "pipeline_scoring_timeout", "Sweep exceeded 300s", "error",
                "corr-abc", {"processed": 120},
            )

        mock_client.post.assert_awaited_once()
        url = mock_client.post.call_args[0][0]
        content = mock_client.post.call_args.kwargs["json"]["content"]
        assert url == "https://hooks.example.com/alerts"
        assert "**pipeline_scoring_timeout**" in content
        assert "corr-abc" in content
        assert "processed: 120" in content

    async def test_no_url_configured_skips_post(self):
        mock_settings = MagicMock()
        mock_settings.alert_webhook_url = ""

        with (
            patch("portalscore.config.get_settings", return_value=mock_settings),
            patch("httpx.AsyncClient") as mock_client_cls,
        ):
            await alerting._send_webhook_alert("x", "y", "warning", None, None)

        mock_client_cls.assert_not_called()

    async def test_post_failure_is_logged(self, caplog):
        mock_settings = MagicMock()
        mock_settings.alert_webhook_url = "https://hooks.example.com/alerts"
        mock_client = _mock_http_client()
        mock_client.post = AsyncMock(side_effect=RuntimeError("connection reset"))

        with (
            patch("portalscore.config.get_settings", return_value=mock_settings),
            patch("httpx.AsyncClient", return_value=mock_client),
            caplog.at_level(logging.WARNING, logger="portalscore.utils.alerting"),
        ):
            await alerting._send_webhook_alert("x", "y", "error", None, None)

        assert "Failed to send webhook alert" in caplog.text
