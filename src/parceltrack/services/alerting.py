"""Integrity alerting.

A failed audit-trail write means a delivery could have changed state with no
record of why. The lifecycle service rolls such a transaction back, logs it
at CRITICAL and raises an alert through this module so an operator looks at
the database.

Alerts are posted as JSON to a webhook, optionally signed with HMAC-SHA256,
and rate limited per alert type and minute. Delivery failures are logged and
reported in the returned ``AlertResult``; they are never raised.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from parceltrack.core.config import AlertingSettings

logger = logging.getLogger(__name__)


class AlertEventType(str, Enum):
    """Conditions that raise an alert."""

    AUDIT_TRAIL_FAILURE = "audit_trail_failure"
    SYSTEM_ERROR = "system_error"


class AlertSeverity(str, Enum):
    """Severity levels for alerts."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True, slots=True)
class AlertPayload:
    """Structured payload for an alert.

    Attributes:
        alert_id: Unique identifier for this alert instance.
        event_type: Type of event that triggered the alert.
        severity: Alert severity level.
        title: Brief human-readable title.
        description: Detailed description of the alert condition.
        resource_id: Identifier of the affected delivery, if any.
        details: Additional context-specific details.
        timestamp: When the alert was generated.
    """

    alert_id: str
    event_type: AlertEventType
    severity: AlertSeverity
    title: str
    description: str
    resource_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert payload to dictionary for serialization."""
        return {
            "alert_id": self.alert_id,
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "resource_id": self.resource_id,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class AlertingConfig:
    """Configuration for the alerting service.

    Attributes:
        enabled: Master switch for alerting.
        webhook_url: URL for webhook alert delivery.
        webhook_secret: Shared secret for webhook HMAC signature.
        rate_limit_per_minute: Maximum alerts per minute per event type.
    """

    enabled: bool = True
    webhook_url: str | None = None
    webhook_secret: str | None = None
    rate_limit_per_minute: int = 10

    @classmethod
    def from_settings(cls, settings: AlertingSettings) -> AlertingConfig:
        """Build the config from the ``alerting`` settings group."""
        return cls(
            enabled=settings.enabled,
            webhook_url=settings.webhook_url,
            webhook_secret=(
                settings.webhook_secret.get_secret_value() if settings.webhook_secret else None
            ),
            rate_limit_per_minute=settings.rate_limit_per_minute,
        )


@dataclass
class AlertResult:
    """Result of an alert delivery attempt.

    Attributes:
        success: Whether the alert was delivered successfully.
        alert_id: ID of the alert.
        error: Error message if delivery failed.
        delivered_at: Timestamp of successful delivery.
    """

    success: bool
    alert_id: str
    error: str | None = None
    delivered_at: datetime | None = None


class AlertingService:
    """Sends integrity alerts to an operator webhook.

    Example:
        service = AlertingService(AlertingConfig(webhook_url="https://ops.example.com/hook"))
        await service.send_integrity_alert(
            alert_type=AlertEventType.AUDIT_TRAIL_FAILURE,
            title="Audit event write failed",
            description="...",
            resource_id=str(delivery_id),
        )
    """

    def __init__(self, config: AlertingConfig) -> None:
        """Initialize the alerting service.

        Args:
            config: Alerting configuration.
        """
        self._config = config

        # Key: (event_type, minute_bucket), Value: count
        self._rate_limit_counters: dict[tuple[AlertEventType, int], int] = defaultdict(int)

        self._http_client: httpx.AsyncClient | None = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client for webhook delivery."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def send_integrity_alert(
        self,
        *,
        alert_type: AlertEventType,
        title: str,
        description: str,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AlertResult | None:
        """Send a CRITICAL alert for an integrity problem.

        Args:
            alert_type: Type of integrity alert.
            title: Alert title.
            description: Detailed description.
            resource_id: Affected delivery, if any.
            details: Additional context.

        Returns:
            The delivery result, or None if alerting is disabled, no webhook
            is configured or the rate limit was hit.
        """
        if not self._config.enabled or not self._config.webhook_url:
            return None

        if not self._check_rate_limit(alert_type):
            logger.warning(
                "Alert rate limit exceeded for event_type=%s",
                alert_type.value,
            )
            return None

        alert = AlertPayload(
            alert_id=self._generate_alert_id(),
            event_type=alert_type,
            severity=AlertSeverity.CRITICAL,
            title=title,
            description=description,
            resource_id=resource_id,
            details=details or {},
        )
        return await self._send_webhook(alert)

    async def _send_webhook(self, alert: AlertPayload) -> AlertResult:
        """Send alert to webhook endpoint."""
        if not self._config.webhook_url:
            return AlertResult(
                success=False,
                alert_id=alert.alert_id,
                error="Webhook URL not configured",
            )

        payload = json.dumps(alert.to_dict(), default=str)
        headers = {
            "Content-Type": "application/json",
            "X-Alert-ID": alert.alert_id,
            "X-Alert-Severity": alert.severity.value,
        }
        if self._config.webhook_secret:
            headers["X-Signature-SHA256"] = self._compute_webhook_signature(
                payload, self._config.webhook_secret
            )

        try:
            client = await self._get_http_client()
            response = await client.post(
                self._config.webhook_url,
                content=payload,
                headers=headers,
            )
        except httpx.RequestError as e:
            error = f"Webhook request failed: {e}"
            logger.error(
                "Webhook alert failed: alert_id=%s, error=%s",
                alert.alert_id,
                error,
            )
            return AlertResult(success=False, alert_id=alert.alert_id, error=error)

        if not response.is_success:
            error = f"Webhook returned status {response.status_code}"
            logger.error(
                "Webhook alert failed: alert_id=%s, error=%s",
                alert.alert_id,
                error,
            )
            return AlertResult(success=False, alert_id=alert.alert_id, error=error)

        logger.info(
            "Webhook alert delivered: alert_id=%s, status=%d",
            alert.alert_id,
            response.status_code,
        )
        return AlertResult(
            success=True,
            alert_id=alert.alert_id,
            delivered_at=datetime.now(UTC),
        )

    def _compute_webhook_signature(self, payload: str, secret: str) -> str:
        """Compute HMAC-SHA256 signature for webhook payload."""
        signature = hmac.new(
            secret.encode("utf-8"),
            payload.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return f"sha256={signature}"

    def _generate_alert_id(self) -> str:
        """Generate a unique alert ID."""
        timestamp = datetime.now(UTC).strftime("%Y%m%d%H%M%S")
        return f"alert-{timestamp}-{secrets.token_hex(4)}"

    def _check_rate_limit(self, event_type: AlertEventType) -> bool:
        """Return True if the alert can be sent, False if rate-limited."""
        minute_bucket = int(datetime.now(UTC).timestamp() // 60)
        key = (event_type, minute_bucket)

        # Keep only the current and previous minute
        for stale in [k for k in self._rate_limit_counters if k[1] < minute_bucket - 1]:
            del self._rate_limit_counters[stale]

        current_count = self._rate_limit_counters[key]
        if current_count >= self._config.rate_limit_per_minute:
            return False

        self._rate_limit_counters[key] = current_count + 1
        return True
