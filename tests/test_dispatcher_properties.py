"""
Property-based tests for the notification dispatcher.

Webhook requests are served by httpx.MockTransport; subscriptions live in a
JsonStateStore that never touches the disk.
"""

import asyncio
import json
import tempfile
import uuid
from io import StringIO
from pathlib import Path
from typing import Any

import httpx
from hypothesis import assume, given, settings
from hypothesis import strategies as st

from domain_monitor.config import SignalConfig, SlackConfig, WebhookDeliveryConfig
from domain_monitor.dispatcher import (
    BLOCKED_BODY,
    NotificationDispatcher,
    SignalChannel,
    SlackChannel,
    build_signal_message,
    build_slack_payload,
    is_blocked_url,
    sign_payload,
    subscription_matches,
)
from domain_monitor.enums import LogLevel, WebhookEvent
from domain_monitor.event_logger import EventLogger
from domain_monitor.exceptions import DeliveryError, PersistenceError
from domain_monitor.state_store import JsonStateStore


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.new_event_loop().run_until_complete(coro)


def memory_store() -> JsonStateStore:
    path = Path(tempfile.gettempdir()) / f"domain-monitor-{uuid.uuid4().hex}.json"
    return JsonStateStore(path, "test-secret", autosave=False)


class RecordingHandler:
    """MockTransport handler that records requests and answers with a fixed status."""

    def __init__(self, status: int = 200, body: str = "ok", error: Exception = None) -> None:
        self.status = status
        self.body = body
        self.error = error
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status, text=self.body)


class FakeChannel:
    """Alert channel test double."""

    def __init__(self, name: str = "fake", events: tuple = (), result: bool = True, error: Exception = None):
        self._name = name
        self._events = events
        self._result = result
        self._error = error
        self.sent: list[tuple[str, dict]] = []

    def get_name(self) -> str:
        return self._name

    def accepts(self, event: str) -> bool:
        return not self._events or event in self._events

    async def send(self, event: str, data: dict[str, Any]) -> bool:
        self.sent.append((event, data))
        if self._error is not None:
            raise self._error
        return self._result


def make_dispatcher(store, handler, **kwargs) -> NotificationDispatcher:
    return NotificationDispatcher(
        store=store,
        config=WebhookDeliveryConfig(timeout_seconds=1.0),
        http_transport=httpx.MockTransport(handler),
        **kwargs,
    )


event_names = st.sampled_from([e.value for e in WebhookEvent])

secrets = st.text(
    alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789"),
    min_size=8,
    max_size=40,
)


class TestSubscriptionMatchingProperty:
    """
    Property-based tests for event matching.
    """

    @given(event=event_names)
    @settings(max_examples=50)
    def test_exact_name_matches(self, event: str) -> None:
        """
        Property 1: A subscription listing an event name matches that event.
        """
        assert subscription_matches({event}, event)

    @given(event=event_names)
    @settings(max_examples=50)
    def test_prefix_wildcard_matches_same_family(self, event: str) -> None:
        """
        Property 2: "family.*" matches every event of that family and no other.
        """
        family = event.split(".")[0]
        assert subscription_matches({f"{family}.*"}, event)
        assert not subscription_matches({"nonexistent.*"}, event)

    def test_expiring_subscription_ignores_expired(self) -> None:
        assert subscription_matches({"domain.expiring"}, "domain.expiring")
        assert not subscription_matches({"domain.expiring"}, "domain.expired")

    def test_empty_event_set_matches_nothing(self) -> None:
        assert not subscription_matches(set(), "health.failed")


class TestSignatureProperty:
    """
    Property-based tests for payload signatures.
    """

    @given(payload=st.text(max_size=200), secret=secrets)
    @settings(max_examples=100)
    def test_signature_format(self, payload: str, secret: str) -> None:
        """
        Property 3: Signatures are "sha256=" followed by 64 hex digits.
        """
        signature = sign_payload(payload, secret)
        assert signature.startswith("sha256=")
        digest = signature[len("sha256="):]
        assert len(digest) == 64
        assert all(c in "0123456789abcdef" for c in digest)

    @given(payload=st.text(min_size=1, max_size=200), secret=secrets, other=secrets)
    @settings(max_examples=100)
    def test_signature_depends_on_secret(self, payload: str, secret: str, other: str) -> None:
        """
        Property 4: Different secrets give different signatures for the same body.
        """
        assume(secret != other)
        assert sign_payload(payload, secret) != sign_payload(payload, other)


class TestBlockedUrlProperty:
    """
    Property-based tests for private address blocking.
    """

    @given(address=st.one_of(
        st.ip_addresses(v=4, network="10.0.0.0/8"),
        st.ip_addresses(v=4, network="192.168.0.0/16"),
        st.ip_addresses(v=4, network="127.0.0.0/8"),
        st.ip_addresses(v=4, network="169.254.0.0/16"),
    ))
    @settings(max_examples=100)
    def test_private_ipv4_blocked(self, address) -> None:
        """
        Property 5: URLs with loopback, private or link-local IPv4 hosts are blocked.
        """
        assert is_blocked_url(f"http://{address}/hook")

    def test_localhost_and_ipv6_loopback_blocked(self) -> None:
        assert is_blocked_url("http://localhost:8080/hook")
        assert is_blocked_url("http://api.localhost/hook")
        assert is_blocked_url("http://[::1]/hook")
        assert is_blocked_url("http://0.0.0.0/hook")

    def test_missing_host_blocked(self) -> None:
        assert is_blocked_url("not a url")
        assert is_blocked_url("http:///path")

    def test_public_hosts_allowed(self) -> None:
        assert not is_blocked_url("https://hooks.example.com/abc")
        assert not is_blocked_url("https://93.184.216.34/hook")


class TestWebhookDeliveryProperty:
    """
    Property-based tests for webhook fan-out and delivery records.
    """

    @given(secret=secrets, domain=st.sampled_from(["example.com", "shop.example.org", "xn--bcher-kva.de"]))
    @settings(max_examples=30)
    def test_signed_delivery(self, secret: str, domain: str) -> None:
        """
        Property 6: Each delivery carries the event headers and an HMAC of the exact body sent.
        """
        store = memory_store()
        sub = store.add_subscription("https://hooks.example.com/in", secret, {"domain.expiring"})
        handler = RecordingHandler(status=204, body="")
        dispatcher = make_dispatcher(store, handler)

        records = run_async(dispatcher.emit(WebhookEvent.DOMAIN_EXPIRING, {"domain": domain, "days": 7}))

        assert len(records) == 1
        assert records[0].success is True
        assert records[0].subscription_id == sub.id
        assert len(handler.requests) == 1

        request = handler.requests[0]
        body = request.content.decode("utf-8")
        assert request.headers["X-Domain-Monitor-Signature"] == sign_payload(body, secret)
        assert request.headers["X-Domain-Monitor-Event"] == "domain.expiring"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["X-Domain-Monitor-Delivery"]

        envelope = json.loads(body)
        assert envelope["event"] == "domain.expiring"
        assert envelope["data"] == {"domain": domain, "days": 7}
        assert envelope["timestamp"]
        assert records[0].payload == body

    def test_only_matching_subscriptions_are_contacted(self) -> None:
        """Two subscriptions for different events: only the matching one is called."""
        store = memory_store()
        expiring = store.add_subscription("https://a.example.com/hook", "s1", {"domain.expiring"})
        store.add_subscription("https://b.example.com/hook", "s2", {"domain.expired"})
        handler = RecordingHandler()
        dispatcher = make_dispatcher(store, handler)

        records = run_async(dispatcher.emit(WebhookEvent.DOMAIN_EXPIRING, {"domain": "example.com"}))

        assert [r.subscription_id for r in records] == [expiring.id]
        assert [str(r.url) for r in handler.requests] == ["https://a.example.com/hook"]
        assert len(store.deliveries()) == 1

    def test_disabled_subscription_is_skipped(self) -> None:
        store = memory_store()
        store.add_subscription("https://a.example.com/hook", "s1", {"health.failed"}, enabled=False)
        handler = RecordingHandler()
        dispatcher = make_dispatcher(store, handler)

        records = run_async(dispatcher.emit(WebhookEvent.HEALTH_FAILED, {"domain": "example.com"}))

        assert records == []
        assert handler.requests == []

    def test_no_subscriptions_is_not_an_error(self) -> None:
        store = memory_store()
        dispatcher = make_dispatcher(store, RecordingHandler())
        assert run_async(dispatcher.emit("refresh.complete", {"total": 0})) == []

    @given(failures=st.integers(min_value=1, max_value=5))
    @settings(max_examples=20)
    def test_failure_count_increments_then_resets(self, failures: int) -> None:
        """
        Property 7: Each failed delivery adds one to failure_count; a success resets it to 0.
        """
        store = memory_store()
        sub = store.add_subscription("https://hooks.example.com/in", "secret", {"uptime.*"})
        handler = RecordingHandler(status=503, body="unavailable")
        dispatcher = make_dispatcher(store, handler)

        for expected in range(1, failures + 1):
            records = run_async(dispatcher.emit(WebhookEvent.UPTIME_DOWN, {"domain": "example.com"}))
            assert records[0].success is False
            assert records[0].response_status == 503
            current = store.get_subscription(sub.id)
            assert current.failure_count == expected
            assert current.last_status == 503

        handler.status = 200
        run_async(dispatcher.emit(WebhookEvent.UPTIME_RECOVERED, {"domain": "example.com"}))
        current = store.get_subscription(sub.id)
        assert current.failure_count == 0
        assert current.last_status == 200
        assert current.last_triggered is not None

    def test_transport_error_recorded_without_status(self) -> None:
        store = memory_store()
        sub = store.add_subscription("https://hooks.example.com/in", "secret", {"health.failed"})
        handler = RecordingHandler(error=httpx.ConnectError("connection refused"))
        dispatcher = make_dispatcher(store, handler)

        records = run_async(dispatcher.emit(WebhookEvent.HEALTH_FAILED, {"domain": "example.com"}))

        assert records[0].success is False
        assert records[0].response_status is None
        assert "connection refused" in records[0].response_body
        assert store.get_subscription(sub.id).failure_count == 1

    def test_store_errors_stay_inside_emit(self) -> None:
        """A subscription removed while its delivery is in flight does not break the emit."""
        store = memory_store()
        sub = store.add_subscription("https://hooks.example.com/in", "secret", {"health.failed"})
        logger = EventLogger(output_format="json", output_stream=StringIO())
        channel = FakeChannel()

        def handler(request: httpx.Request) -> httpx.Response:
            store.remove_subscription(sub.id)
            return httpx.Response(200, text="ok")

        dispatcher = make_dispatcher(store, handler, channels=[channel], logger=logger)
        records = run_async(dispatcher.emit(WebhookEvent.HEALTH_FAILED, {"domain": "example.com"}))

        assert len(records) == 1
        assert records[0].success is True
        assert store.get_subscription(sub.id) is None
        assert len(channel.sent) == 1
        errors = logger.find(component="dispatcher", level=LogLevel.ERROR)
        assert [e.message for e in errors] == ["Could not record webhook delivery"]
        assert errors[0].data["error_type"] == "NotFoundError"

    def test_persistence_failure_stays_inside_emit(self) -> None:
        class FailingStore(JsonStateStore):
            def record_delivery(self, record) -> None:
                raise PersistenceError(code="io_error", message="disk full")

        store = FailingStore(Path(tempfile.gettempdir()) / f"domain-monitor-{uuid.uuid4().hex}.json", "s", autosave=False)
        store.add_subscription("https://hooks.example.com/in", "secret", {"domain.expired"})

        records = run_async(make_dispatcher(store, RecordingHandler()).emit(WebhookEvent.DOMAIN_EXPIRED, {}))

        assert [r.success for r in records] == [True]

    def test_private_url_blocked_without_request(self) -> None:
        store = memory_store()
        sub = store.add_subscription("http://127.0.0.1:9000/hook", "secret", {"domain.created"})
        handler = RecordingHandler()
        dispatcher = make_dispatcher(store, handler)

        records = run_async(dispatcher.emit(WebhookEvent.DOMAIN_CREATED, {"domain": "example.com"}))

        assert handler.requests == []
        assert records[0].success is False
        assert records[0].response_status is None
        assert records[0].response_body == BLOCKED_BODY
        assert store.get_subscription(sub.id).failure_count == 1

    def test_response_body_truncated(self) -> None:
        store = memory_store()
        store.add_subscription("https://hooks.example.com/in", "secret", {"domain.created"})
        handler = RecordingHandler(status=500, body="x" * 5000)
        dispatcher = make_dispatcher(store, handler)

        records = run_async(dispatcher.emit(WebhookEvent.DOMAIN_CREATED, {"domain": "example.com"}))

        assert len(records[0].response_body) == WebhookDeliveryConfig().response_body_limit

    @given(attempt=st.integers(min_value=1, max_value=10))
    @settings(max_examples=20)
    def test_attempt_number_recorded(self, attempt: int) -> None:
        store = memory_store()
        store.add_subscription("https://hooks.example.com/in", "secret", {"domain.deleted"})
        dispatcher = make_dispatcher(store, RecordingHandler())

        records = run_async(dispatcher.emit(WebhookEvent.DOMAIN_DELETED, {"domain": "example.com"}, attempt=attempt))

        assert records[0].attempt == attempt
        assert store.deliveries()[0].attempt == attempt


class TestBackgroundEmitProperty:
    """
    Property-based tests for fire-and-forget emits.
    """

    def test_background_emit_completes_on_drain(self) -> None:
        store = memory_store()
        store.add_subscription("https://hooks.example.com/in", "secret", {"refresh.complete"})
        handler = RecordingHandler()
        dispatcher = make_dispatcher(store, handler)

        async def scenario():
            dispatcher.emit_background(WebhookEvent.REFRESH_COMPLETE, {"total": 3, "completed": 3, "failed": 0})
            assert dispatcher.pending == 1
            await dispatcher.drain()
            return dispatcher.pending

        assert run_async(scenario()) == 0
        assert len(handler.requests) == 1
        assert len(store.deliveries()) == 1


class TestAlertChannelProperty:
    """
    Property-based tests for alternate alert channels.
    """

    @given(event=event_names)
    @settings(max_examples=30)
    def test_channel_receives_accepted_events(self, event: str) -> None:
        """
        Property 8: A channel receives exactly the events it accepts.
        """
        store = memory_store()
        everything = FakeChannel("everything")
        expiry_only = FakeChannel("expiry", events=("domain.expiring", "domain.expired"))
        dispatcher = make_dispatcher(store, RecordingHandler(), channels=[everything, expiry_only])

        run_async(dispatcher.emit(event, {"domain": "example.com"}))

        assert everything.sent == [(event, {"domain": "example.com"})]
        if event in ("domain.expiring", "domain.expired"):
            assert len(expiry_only.sent) == 1
        else:
            assert expiry_only.sent == []

    def test_failing_channel_does_not_stop_others(self) -> None:
        store = memory_store()
        broken = FakeChannel("broken", error=DeliveryError(code="x", message="down"))
        working = FakeChannel("working")
        dispatcher = make_dispatcher(store, RecordingHandler(), channels=[broken, working])

        run_async(dispatcher.emit(WebhookEvent.HEALTH_FAILED, {"domain": "example.com"}))

        assert len(broken.sent) == 1
        assert len(working.sent) == 1

    def test_signal_channel_posts_to_gateway(self) -> None:
        handler = RecordingHandler(status=201)
        channel = SignalChannel(
            SignalConfig(api_url="http://signal.example.net", sender="+10000000000", recipients=["+20000000000"]),
            http_transport=httpx.MockTransport(handler),
        )

        sent = run_async(channel.send("domain.expired", {"domain": "example.com", "days": 0}))

        assert sent is True
        request = handler.requests[0]
        assert request.url.path == "/v2/send"
        body = json.loads(request.content)
        assert body["number"] == "+10000000000"
        assert body["recipients"] == ["+20000000000"]
        assert "domain.expired" in body["message"]
        assert "example.com" in body["message"]

    def test_signal_channel_unreachable_raises_delivery_error(self) -> None:
        handler = RecordingHandler(error=httpx.ConnectError("no route"))
        channel = SignalChannel(
            SignalConfig(api_url="http://signal.example.net", sender="+1", recipients=["+2"]),
            http_transport=httpx.MockTransport(handler),
        )
        try:
            run_async(channel.send("health.failed", {"domain": "example.com"}))
            assert False, "Expected DeliveryError"
        except DeliveryError as e:
            assert e.code == "signal_unreachable"

    def test_slack_channel_requires_200(self) -> None:
        handler = RecordingHandler(status=404, body="no_service")
        channel = SlackChannel(
            SlackConfig(webhook_url="https://hooks.slack.example.com/services/T/B/X"),
            http_transport=httpx.MockTransport(handler),
        )

        assert run_async(channel.send("domain.expiring", {"domain": "example.com"})) is False
        payload = json.loads(handler.requests[0].content)
        assert payload["attachments"][0]["color"] == "#f59e0b"

    def test_simulation_mode_sends_nothing(self) -> None:
        handler = RecordingHandler()
        transport = httpx.MockTransport(handler)
        signal = SignalChannel(
            SignalConfig(api_url="http://signal.example.net", sender="+1", recipients=["+2"]),
            simulation_mode=True,
            http_transport=transport,
        )
        slack = SlackChannel(
            SlackConfig(webhook_url="https://hooks.slack.example.com/x"),
            simulation_mode=True,
            http_transport=transport,
        )

        assert run_async(signal.send("domain.expired", {})) is True
        assert run_async(slack.send("domain.expired", {})) is True
        assert handler.requests == []

    def test_channel_event_filter_and_enabled_flag(self) -> None:
        filtered = SlackChannel(SlackConfig(webhook_url="https://x.example.com", events=["domain.expired"]))
        disabled = SignalChannel(SignalConfig(api_url="http://s", sender="+1", enabled=False))

        assert filtered.accepts("domain.expired")
        assert not filtered.accepts("domain.expiring")
        assert not disabled.accepts("domain.expired")

    def test_message_builders_include_relevant_fields(self) -> None:
        message = build_signal_message("domain.expiring", {"domain": "example.com", "days": 5}, "2026-01-01T00:00:00Z")
        assert "Event: domain.expiring" in message
        assert "Severity: warning" in message
        assert "domain: example.com" in message
        assert "days: 5" in message

        payload = build_slack_payload("uptime.recovered", {"domain": "example.com", "empty": ""})
        texts = [f["text"] for f in payload["blocks"][1]["fields"]]
        assert texts == ["*domain:* example.com"]
        assert payload["attachments"][0]["color"] == "#22c55e"
