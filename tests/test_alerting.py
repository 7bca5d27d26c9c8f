"""Tests for integrity alerting service.

Tests cover:
- AlertPayload construction and serialization
- AlertingConfig defaults and settings mapping
- Integrity alert dispatch and its no-op cases
- Webhook delivery with HMAC signatures
- Rate limiting
- Alert ID generation
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from pydantic import SecretStr

from parceltrack.core.config import AlertingSettings
from parceltrack.services.alerting import (
    AlertEventType,
    AlertingConfig,
    AlertingService,
    AlertPayload,
    AlertResult,
    AlertSeverity,
)


def _alert(**overrides) -> AlertPayload:
    fields = {
        "alert_id": "alert-123",
        "event_type": AlertEventType.AUDIT_TRAIL_FAILURE,
        "severity": AlertSeverity.CRITICAL,
        "title": "Test",
        "description": "Test alert",
    }
    fields.update(overrides)
    return AlertPayload(**fields)


def _response(status_code: int) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    return response


class TestAlertPayload:
    """Tests for AlertPayload dataclass."""

    def test_minimal_payload(self):
        """Payload can be created with required fields only."""
        payload = _alert()

        assert payload.resource_id is None
        assert payload.details == {}
        assert payload.timestamp.tzinfo is not None

    def test_payload_to_dict(self):
        """Payload serializes to dictionary correctly."""
        timestamp = datetime(2026, 1, 15, 10, 30, 0, tzinfo=UTC)
        payload = _alert(
            resource_id="d-1",
            details={"operation": "assign"},
            timestamp=timestamp,
        )

        result = payload.to_dict()

        assert result["event_type"] == "audit_trail_failure"
        assert result["severity"] == "critical"
        assert result["resource_id"] == "d-1"
        assert result["details"] == {"operation": "assign"}
        assert result["timestamp"] == "2026-01-15T10:30:00+00:00"


class TestAlertingConfig:
    """Tests for AlertingConfig dataclass."""

    def test_default_config(self):
        """Default config has expected values."""
        config = AlertingConfig()

        assert config.enabled is True
        assert config.webhook_url is None
        assert config.webhook_secret is None
        assert config.rate_limit_per_minute == 10

    def test_from_settings_unwraps_secret(self):
        """The secret is taken out of its SecretStr wrapper."""
        settings = AlertingSettings(
            webhook_url="https://ops.example.com/hook",
            webhook_secret=SecretStr("ops-secret"),
            rate_limit_per_minute=5,
        )

        config = AlertingConfig.from_settings(settings)

        assert config.webhook_url == "https://ops.example.com/hook"
        assert config.webhook_secret == "ops-secret"
        assert config.rate_limit_per_minute == 5


class TestIntegrityAlerts:
    """Tests for send_integrity_alert."""

    @pytest.mark.asyncio
    async def test_send_integrity_alert(self):
        """Integrity alerts are CRITICAL and carry the delivery ID."""
        service = AlertingService(AlertingConfig(webhook_url="https://example.com/webhook"))

        with patch.object(service, "_send_webhook", new_callable=AsyncMock) as mock_send:
            mock_send.return_value = AlertResult(success=True, alert_id="test")

            result = await service.send_integrity_alert(
                alert_type=AlertEventType.AUDIT_TRAIL_FAILURE,
                title="Delivery audit event could not be recorded",
                description="request_transition was rolled back",
                resource_id="d-42",
                details={"operation": "request_transition"},
            )

            assert result.success is True
            alert = mock_send.call_args[0][0]
            assert alert.event_type == AlertEventType.AUDIT_TRAIL_FAILURE
            assert alert.severity == AlertSeverity.CRITICAL
            assert alert.resource_id == "d-42"

    @pytest.mark.asyncio
    async def test_disabled_service_sends_nothing(self):
        """Disabled alerting returns None without a request."""
        service = AlertingService(
            AlertingConfig(enabled=False, webhook_url="https://example.com/webhook")
        )

        with patch.object(service, "_send_webhook", new_callable=AsyncMock) as mock_send:
            result = await service.send_integrity_alert(
                alert_type=AlertEventType.SYSTEM_ERROR,
                title="t",
                description="d",
            )

        assert result is None
        mock_send.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_webhook_sends_nothing(self):
        """Without a webhook URL alerts are only logged by the caller."""
        service = AlertingService(AlertingConfig())

        result = await service.send_integrity_alert(
            alert_type=AlertEventType.SYSTEM_ERROR,
            title="t",
            description="d",
        )

        assert result is None


class TestWebhookDelivery:
    """Tests for webhook alert delivery."""

    @pytest.mark.asyncio
    async def test_successful_webhook_delivery(self):
        """Successful webhook delivery returns success result."""
        service = AlertingService(AlertingConfig(webhook_url="https://example.com/webhook"))

        with patch.object(service, "_get_http_client", new_callable=AsyncMock) as mock_client:
            mock_client.return_value.post = AsyncMock(return_value=_response(200))

            result = await service._send_webhook(_alert())

            assert result.success is True
            assert result.error is None
            assert result.delivered_at is not None
            headers = mock_client.return_value.post.call_args.kwargs["headers"]
            assert headers["X-Alert-ID"] == "alert-123"
            assert headers["X-Alert-Severity"] == "critical"
            assert "X-Signature-SHA256" not in headers

    @pytest.mark.asyncio
    async def test_failed_webhook_delivery(self):
        """A non-2xx answer returns a failure result."""
        service = AlertingService(AlertingConfig(webhook_url="https://example.com/webhook"))

        with patch.object(service, "_get_http_client", new_callable=AsyncMock) as mock_client:
            mock_client.return_value.post = AsyncMock(return_value=_response(500))

            result = await service._send_webhook(_alert())

            assert result.success is False
            assert "500" in result.error

    @pytest.mark.asyncio
    async def test_unreachable_webhook(self):
        """Network errors are reported, not raised."""
        service = AlertingService(AlertingConfig(webhook_url="https://example.com/webhook"))

        with patch.object(service, "_get_http_client", new_callable=AsyncMock) as mock_client:
            mock_client.return_value.post = AsyncMock(
                side_effect=httpx.ConnectError("connection refused")
            )

            result = await service._send_webhook(_alert())

            assert result.success is False
            assert "connection refused" in result.error

    @pytest.mark.asyncio
    async def test_webhook_includes_hmac_signature(self):
        """Webhook requests include HMAC signature when secret is configured."""
        service = AlertingService(
            AlertingConfig(
                webhook_url="https://example.com/webhook",
                webhook_secret="test-secret",
            )
        )

        with patch.object(service, "_get_http_client", new_callable=AsyncMock) as mock_client:
            mock_client.return_value.post = AsyncMock(return_value=_response(200))

            await service._send_webhook(_alert())

            call_kwargs = mock_client.return_value.post.call_args.kwargs
            expected = service._compute_webhook_signature(call_kwargs["content"], "test-secret")
            assert call_kwargs["headers"]["X-Signature-SHA256"] == expected


class TestRateLimiting:
    """Tests for alert rate limiting."""

    def test_rate_limit_blocks_excessive_alerts(self):
        """Rate limiting blocks excessive alerts."""
        service = AlertingService(
            AlertingConfig(webhook_url="https://example.com/webhook", rate_limit_per_minute=2)
        )

        assert service._check_rate_limit(AlertEventType.AUDIT_TRAIL_FAILURE) is True
        assert service._check_rate_limit(AlertEventType.AUDIT_TRAIL_FAILURE) is True
        assert service._check_rate_limit(AlertEventType.AUDIT_TRAIL_FAILURE) is False

    def test_rate_limit_per_event_type(self):
        """Rate limiting is per event type."""
        service = AlertingService(
            AlertingConfig(webhook_url="https://example.com/webhook", rate_limit_per_minute=1)
        )

        assert service._check_rate_limit(AlertEventType.AUDIT_TRAIL_FAILURE) is True
        assert service._check_rate_limit(AlertEventType.SYSTEM_ERROR) is True
        assert service._check_rate_limit(AlertEventType.AUDIT_TRAIL_FAILURE) is False

    @pytest.mark.asyncio
    async def test_rate_limited_alert_returns_none(self):
        """An alert over the limit is dropped."""
        service = AlertingService(
            AlertingConfig(webhook_url="https://example.com/webhook", rate_limit_per_minute=1)
        )

        with patch.object(service, "_send_webhook", new_callable=AsyncMock) as mock_send:
            mock_send.return_value = AlertResult(success=True, alert_id="test")
            kwargs = {
                "alert_type": AlertEventType.AUDIT_TRAIL_FAILURE,
                "title": "t",
                "description": "d",
            }

            assert await service.send_integrity_alert(**kwargs) is not None
            assert await service.send_integrity_alert(**kwargs) is None
            assert mock_send.await_count == 1


class TestAlertIdGeneration:
    """Tests for alert ID generation."""

    def test_alert_id_format(self):
        """Generated alert IDs have expected format."""
        service = AlertingService(AlertingConfig())

        alert_id = service._generate_alert_id()

        # Format: alert-YYYYMMDDHHMMSS-XXXXXXXX
        parts = alert_id.split("-")
        assert parts[0] == "alert"
        assert len(parts[1]) == 14
        assert len(parts[2]) == 8

    def test_alert_ids_are_unique(self):
        """Generated alert IDs are unique."""
        service = AlertingService(AlertingConfig())

        ids = {service._generate_alert_id() for _ in range(100)}

        assert len(ids) == 100


class TestWebhookSignature:
    """Tests for webhook HMAC signature generation."""

    def test_signature_format(self):
        """Signature has expected format."""
        service = AlertingService(AlertingConfig(webhook_secret="test-secret"))

        signature = service._compute_webhook_signature('{"test": "data"}', "test-secret")

        assert signature.startswith("sha256=")
        # SHA256 produces 64 hex characters
        assert len(signature) == 7 + 64

    def test_different_secrets_produce_different_signatures(self):
        """Different secrets produce different signatures."""
        service = AlertingService(AlertingConfig())
        payload = '{"test": "data"}'

        assert service._compute_webhook_signature(
            payload, "secret-1"
        ) != service._compute_webhook_signature(payload, "secret-2")
