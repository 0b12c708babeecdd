"""
Notification dispatcher.

Fans an event out to every enabled webhook subscription whose event set
matches, signing each JSON body with the subscription secret, and to the
alternate channels (Signal gateway, Slack incoming webhook).

Every webhook attempt is recorded through the subscription store together
with the subscription's last status and failure count. Delivery failures are
recorded and logged; they are never raised to the producer of the event.
"""

import asyncio
import hashlib
import hmac
import ipaddress
import json
import uuid
from abc import abstractmethod
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Protocol, Union, runtime_checkable
from urllib.parse import urlsplit

import httpx

from .config import SignalConfig, SlackConfig, WebhookDeliveryConfig
from .enums import EVENT_SEVERITY, Severity, WebhookEvent
from .event_logger import ComponentLogging, EventLogger
from .exceptions import DeliveryError, DomainMonitorError
from .interfaces import SubscriptionStore
from .models import DeliveryRecord, EventPayload, Subscription, utc_now_iso

BLOCKED_BODY = "blocked: private address"

EventName = Union[WebhookEvent, str]


def event_name(event: EventName) -> str:
    return event.value if isinstance(event, WebhookEvent) else str(event)


def subscription_matches(events: Iterable[str], event: str) -> bool:
    """
    True when `event` is one of `events`.

    An entry ending in ".*" subscribes to every event under that prefix,
    e.g. "domain.*" matches "domain.expired".
    """
    for entry in events:
        if entry == event:
            return True
        if entry.endswith(".*") and event.startswith(entry[:-1]):
            return True
    return False


def sign_payload(payload: str, secret: str) -> str:
    """HMAC-SHA256 signature header value for a serialized body."""
    digest = hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def is_blocked_url(url: str) -> bool:
    """True for unparseable URLs and hosts that are loopback, private, link-local or unspecified."""
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return True
    if not host:
        return True
    if host.lower() == "localhost" or host.lower().endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
    )


@runtime_checkable
class AlertChannel(Protocol):
    """A human-readable alert destination independent of webhook subscriptions."""

    @abstractmethod
    def get_name(self) -> str:
        ...

    @abstractmethod
    def accepts(self, event: str) -> bool:
        ...

    @abstractmethod
    async def send(self, event: str, data: dict[str, Any]) -> bool:
        ...


SIGNAL_EMOJI = {
    WebhookEvent.DOMAIN_EXPIRING.value: "⚠️",
    WebhookEvent.DOMAIN_EXPIRED.value: "\U0001f534",
    WebhookEvent.HEALTH_FAILED.value: "❌",
    WebhookEvent.UPTIME_DOWN.value: "\U0001f6a8",
    WebhookEvent.UPTIME_RECOVERED.value: "✅",
    WebhookEvent.REFRESH_COMPLETE.value: "\U0001f504",
    WebhookEvent.DOMAIN_CREATED.value: "\U0001f195",
    WebhookEvent.DOMAIN_DELETED.value: "\U0001f5d1️",
}

SIGNAL_FIELDS = ("domain", "days", "error", "failures", "threshold", "total", "completed")

SLACK_ICONS = {
    WebhookEvent.DOMAIN_EXPIRING.value: ":warning:",
    WebhookEvent.DOMAIN_EXPIRED.value: ":red_circle:",
    WebhookEvent.HEALTH_FAILED.value: ":x:",
    WebhookEvent.UPTIME_DOWN.value: ":rotating_light:",
    WebhookEvent.UPTIME_RECOVERED.value: ":white_check_mark:",
    WebhookEvent.REFRESH_COMPLETE.value: ":arrows_counterclockwise:",
    WebhookEvent.DOMAIN_CREATED.value: ":new:",
    WebhookEvent.DOMAIN_DELETED.value: ":wastebasket:",
}

SEVERITY_COLORS = {
    Severity.WARNING: "#f59e0b",
    Severity.CRITICAL: "#ef4444",
    Severity.RESOLVED: "#22c55e",
    Severity.INFO: "#6366f1",
}


def event_severity(event: str) -> Severity:
    return EVENT_SEVERITY.get(event, Severity.INFO)


def build_signal_message(event: str, data: dict[str, Any], timestamp: Optional[str] = None) -> str:
    """Plain-text alert with the event's emoji and its most relevant fields."""
    emoji = SIGNAL_EMOJI.get(event, "\U0001f514")
    lines = [
        f"{emoji} *Domain Monitor Alert*",
        f"Event: {event}",
        f"Severity: {event_severity(event).value}",
    ]
    for key in SIGNAL_FIELDS:
        if data.get(key) is not None:
            lines.append(f"{key.replace('_', ' ')}: {data[key]}")
    lines.append(f"\n_{timestamp or utc_now_iso()}_")
    return "\n".join(lines)


def build_slack_payload(event: str, data: dict[str, Any], timestamp: Optional[str] = None) -> dict[str, Any]:
    """Block Kit message for a Slack incoming webhook."""
    icon = SLACK_ICONS.get(event, ":bell:")
    fields = [
        {"type": "mrkdwn", "text": f"*{key.replace('_', ' ')}:* {value}"}
        for key, value in data.items()
        if value is not None and value != ""
    ][:8]

    blocks: list[dict[str, Any]] = [
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"{icon} *Domain Monitor Alert*\n*Event:* `{event}`"},
        }
    ]
    if fields:
        blocks.append({"type": "section", "fields": fields})
    blocks.append({
        "type": "context",
        "elements": [
            {"type": "mrkdwn", "text": f"Sent by Domain Monitor at {timestamp or utc_now_iso()}"}
        ],
    })

    return {
        "blocks": blocks,
        "attachments": [
            {
                "color": SEVERITY_COLORS[event_severity(event)],
                "fallback": f"Domain Monitor: {event}",
            }
        ],
    }


class SignalChannel:
    """Signal messenger alerts through a signal-cli REST gateway."""

    def __init__(
        self,
        config: SignalConfig,
        simulation_mode: bool = False,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Args:
            config: Gateway URL, sender number, recipients and event filter
            simulation_mode: If True, no real network requests are made
            http_transport: Optional httpx transport, used instead of the network
        """
        self._config = config
        self._simulation_mode = simulation_mode
        self._transport = http_transport

    def get_name(self) -> str:
        return "signal"

    def accepts(self, event: str) -> bool:
        if not self._config.enabled:
            return False
        return not self._config.events or event in self._config.events

    async def send(self, event: str, data: dict[str, Any]) -> bool:
        if self._simulation_mode:
            return True

        url = f"{self._config.api_url.rstrip('/')}/v2/send"
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    url,
                    json={
                        "message": build_signal_message(event, data),
                        "number": self._config.sender,
                        "recipients": list(self._config.recipients),
                    },
                    timeout=self._config.timeout_seconds,
                )
        except httpx.HTTPError as e:
            raise DeliveryError(
                code="signal_unreachable",
                message=f"Signal gateway request failed: {e}",
                details={"url": url, "event": event},
            ) from e
        return 200 <= response.status_code < 300


class SlackChannel:
    """Slack alerts through an incoming webhook URL."""

    def __init__(
        self,
        config: SlackConfig,
        simulation_mode: bool = False,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._simulation_mode = simulation_mode
        self._transport = http_transport

    def get_name(self) -> str:
        return "slack"

    def accepts(self, event: str) -> bool:
        if not self._config.enabled:
            return False
        return not self._config.events or event in self._config.events

    async def send(self, event: str, data: dict[str, Any]) -> bool:
        if self._simulation_mode:
            return True

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    self._config.webhook_url,
                    json=build_slack_payload(event, data),
                    timeout=self._config.timeout_seconds,
                )
        except httpx.HTTPError as e:
            raise DeliveryError(
                code="slack_unreachable",
                message=f"Slack webhook request failed: {e}",
                details={"event": event},
            ) from e
        return response.status_code == 200


class NotificationDispatcher(ComponentLogging):
    """
    Delivers events to matching webhook subscriptions and alert channels.

    There is no automatic retry. A caller that wants one calls `emit` again
    with `attempt + 1`.
    """

    COMPONENT = "dispatcher"

    def __init__(
        self,
        store: SubscriptionStore,
        config: Optional[WebhookDeliveryConfig] = None,
        channels: Optional[list[AlertChannel]] = None,
        logger: Optional[EventLogger] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._store = store
        self._config = config or WebhookDeliveryConfig()
        self._channels: list[AlertChannel] = list(channels or [])
        self._logger = logger
        self._transport = http_transport
        self._background: set[asyncio.Task] = set()

    def register_channel(self, channel: AlertChannel) -> None:
        self._channels.append(channel)

    @property
    def channels(self) -> list[AlertChannel]:
        return self._channels.copy()

    @property
    def pending(self) -> int:
        """Number of background emits still running."""
        return len(self._background)

    async def emit(
        self,
        event: EventName,
        data: dict[str, Any],
        attempt: int = 1,
    ) -> list[DeliveryRecord]:
        """
        Deliver one event to every matching enabled subscription and channel.

        Args:
            event: Event name
            data: Free-form event fields
            attempt: Attempt number recorded on each delivery

        Returns:
            One DeliveryRecord per webhook subscription contacted
        """
        name = event_name(event)
        payload = EventPayload(
            event=name,
            timestamp=datetime.now(timezone.utc).isoformat(),
            data=dict(data),
        )
        body = json.dumps(payload.to_dict(), default=str)

        subscriptions = [
            s for s in self._store.enabled_subscriptions_for(name)
            if s.enabled and subscription_matches(s.events, name)
        ]
        if subscriptions:
            self._log_info("Firing webhook event", {"event": name, "webhook_count": len(subscriptions)})

        records = list(await asyncio.gather(
            *(self._deliver(s, name, body, attempt) for s in subscriptions)
        ))

        await self._notify_channels(name, payload.data)
        return records

    def emit_background(self, event: EventName, data: dict[str, Any]) -> asyncio.Task:
        """Schedule `emit` without waiting for it; exceptions are logged."""
        task = asyncio.create_task(self.emit(event, data))
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    async def drain(self) -> None:
        """Wait for all background emits to settle."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._log_error("Background event dispatch failed", error=error)

    async def _deliver(
        self,
        subscription: Subscription,
        event: str,
        body: str,
        attempt: int,
    ) -> DeliveryRecord:
        if self._config.block_private_addresses and is_blocked_url(subscription.url):
            self._log_warn(
                "Blocked webhook delivery to private/loopback URL",
                {"webhook_id": subscription.id, "url": subscription.url},
            )
            return self._record(subscription, event, body, None, BLOCKED_BODY, False, attempt)

        headers = {
            "Content-Type": "application/json",
            "X-Domain-Monitor-Signature": sign_payload(body, subscription.secret),
            "X-Domain-Monitor-Event": event,
            "X-Domain-Monitor-Delivery": str(uuid.uuid4()),
            "User-Agent": self._config.user_agent,
        }

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    subscription.url,
                    content=body.encode("utf-8"),
                    headers=headers,
                    timeout=self._config.timeout_seconds,
                )
        except httpx.HTTPError as e:
            self._log_error(
                "Webhook delivery failed",
                error=e,
                data={"webhook_id": subscription.id, "event": event, "attempt": attempt},
            )
            return self._record(subscription, event, body, None, str(e) or type(e).__name__, False, attempt)

        success = 200 <= response.status_code < 300
        if success:
            self._log_info(
                "Webhook delivered",
                {"webhook_id": subscription.id, "event": event, "status": response.status_code},
            )
        else:
            self._log_warn(
                "Webhook delivery non-2xx",
                {"webhook_id": subscription.id, "event": event, "status": response.status_code},
            )
        return self._record(subscription, event, body, response.status_code, response.text, success, attempt)

    def _record(
        self,
        subscription: Subscription,
        event: str,
        body: str,
        status: Optional[int],
        response_body: Optional[str],
        success: bool,
        attempt: int,
    ) -> DeliveryRecord:
        if response_body is not None:
            response_body = response_body[: self._config.response_body_limit]

        record = DeliveryRecord(
            subscription_id=subscription.id,
            event=event,
            payload=body,
            response_status=status,
            response_body=response_body,
            success=success,
            attempt=attempt,
        )
        failure_count = 0 if success else subscription.failure_count + 1
        try:
            self._store.record_delivery(record)
            self._store.update_subscription_status(subscription.id, status, failure_count)
        except DomainMonitorError as e:
            self._log_error(
                "Could not record webhook delivery",
                error=e,
                data={"webhook_id": subscription.id, "event": event, "attempt": attempt},
            )
        return record

    async def _notify_channels(self, event: str, data: dict[str, Any]) -> None:
        for channel in self._channels:
            if not channel.accepts(event):
                continue
            try:
                sent = await channel.send(event, data)
            except Exception as e:
                self._log_error(
                    f"{channel.get_name()} notification failed",
                    error=e,
                    data={"event": event},
                )
                continue
            if sent:
                self._log_info(f"{channel.get_name()} notification sent", {"event": event})
            else:
                self._log_warn(f"{channel.get_name()} notification rejected", {"event": event})
