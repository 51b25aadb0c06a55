"""Tests de AlertEngine (dedup + fan-out), AlertService y PushNotifier."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import requests

from telemetry_api.alerts.alert_engine import AlertEngine
from telemetry_api.alerts.alert_rules import evaluate_thresholds
from telemetry_api.alerts.alert_service import DEFAULT_RESOLUTION, AlertService
from telemetry_api.alerts.push_notifier import PushNotifier
from telemetry_api.errors import NotFound
from telemetry_api.fanout.bus import InMemoryFanOutBus
from telemetry_api.schemas import AlertSeverity, AlertStatus, AlertType, utcnow
from telemetry_api.storage.interfaces import alert_key
from telemetry_api.storage.memory import InMemoryHotCache, InMemoryPrimaryStore
from telemetry_api.validation import validate_telemetry


@pytest.fixture
def store():
    return InMemoryPrimaryStore()


@pytest.fixture
def cache():
    return InMemoryHotCache()


@pytest.fixture
def bus():
    return InMemoryFanOutBus()


def _raise(store, payload, thresholds):
    """Crea la alerta directamente en el store, sin pasar por el engine."""
    [candidate] = evaluate_thresholds(validate_telemetry(payload), thresholds)
    return store.upsert_active_alert(candidate, utcnow()).alert


# =============================================================================
# ALERT ENGINE
# =============================================================================

class TestAlertEngine:

    @pytest.mark.asyncio
    async def test_repeated_violation_increments_occurrences(
        self, store, cache, bus, make_payload, temperature_thresholds
    ):
        engine = AlertEngine(store, cache, bus)
        record = validate_telemetry(make_payload(temperature=50))

        for _ in range(3):
            await engine.evaluate(record, temperature_thresholds)

        [alert] = store.all_alerts()
        assert alert.type == AlertType.TEMPERATURE_HIGH
        assert alert.severity == AlertSeverity.WARNING
        assert alert.status == AlertStatus.ACTIVE
        assert alert.occurrences == 3

    @pytest.mark.asyncio
    async def test_concurrent_evaluations_single_alert(
        self, store, cache, bus, make_payload, temperature_thresholds
    ):
        engine = AlertEngine(store, cache, bus)
        record = validate_telemetry(make_payload(temperature=50))

        await asyncio.gather(*(engine.evaluate(record, temperature_thresholds) for _ in range(5)))

        [alert] = store.all_alerts()
        assert alert.occurrences == 5

    @pytest.mark.asyncio
    async def test_resolved_alert_starts_new_one(
        self, store, cache, bus, make_payload, temperature_thresholds
    ):
        engine = AlertEngine(store, cache, bus)
        record = validate_telemetry(make_payload(temperature=50))

        [first] = await engine.evaluate(record, temperature_thresholds)
        store.update_alert(first.id, {"status": AlertStatus.RESOLVED})
        [second] = await engine.evaluate(record, temperature_thresholds)

        assert second.id != first.id
        assert second.occurrences == 1

    @pytest.mark.asyncio
    async def test_alert_cached_and_published(
        self, store, cache, bus, make_payload, temperature_thresholds
    ):
        engine = AlertEngine(store, cache, bus)
        global_sub = bus.subscribe("global")
        device_sub = bus.subscribe("device:device-1")
        battery_sub = bus.subscribe("battery:battery-1")

        [alert] = await engine.evaluate(
            validate_telemetry(make_payload(temperature=50)), temperature_thresholds
        )

        assert cache.get(alert_key(alert.id))["id"] == alert.id
        [g] = global_sub.drain()
        [d] = device_sub.drain()
        [b] = battery_sub.drain()
        assert (g.event, d.event, b.event) == ("new_alert", "device_alert", "battery_alert")
        assert g.payload["type"] == "battery_temperature_high"
        assert g.payload["deviceId"] == "device-1"
        assert "timestamp" in g.payload

    @pytest.mark.asyncio
    async def test_no_thresholds_no_alerts(self, store, cache, bus, make_payload):
        engine = AlertEngine(store, cache, bus)
        assert await engine.evaluate(validate_telemetry(make_payload(temperature=90)), None) == []
        assert store.all_alerts() == []

    @pytest.mark.asyncio
    async def test_upsert_failure_is_absorbed(self, cache, bus, make_payload, temperature_thresholds):
        broken = MagicMock()
        broken.upsert_active_alert.side_effect = RuntimeError("db gone")
        engine = AlertEngine(broken, cache, bus)

        alerts = await engine.evaluate(
            validate_telemetry(make_payload(temperature=50)), temperature_thresholds
        )
        assert alerts == []

    @pytest.mark.asyncio
    async def test_push_only_for_new_critical_alerts(
        self, store, cache, bus, make_payload, temperature_thresholds
    ):
        notifier = MagicMock(spec=PushNotifier)
        notifier.notify = AsyncMock(return_value=True)
        engine = AlertEngine(store, cache, bus, notifier=notifier)

        await engine.evaluate(validate_telemetry(make_payload(temperature=50)), temperature_thresholds)
        await engine.drain()
        notifier.notify.assert_not_called()

        critical = validate_telemetry(make_payload(device_id="device-9", temperature=65))
        await engine.evaluate(critical, temperature_thresholds)
        await engine.evaluate(critical, temperature_thresholds)
        await engine.drain()

        notifier.notify.assert_awaited_once()
        assert notifier.notify.await_args.args[0].severity == AlertSeverity.CRITICAL

    @pytest.mark.asyncio
    async def test_slow_webhook_does_not_hold_evaluation(
        self, store, cache, bus, make_payload, temperature_thresholds
    ):
        release = asyncio.Event()

        async def slow_notify(alert):
            await release.wait()
            return True

        notifier = MagicMock(spec=PushNotifier)
        notifier.notify = AsyncMock(side_effect=slow_notify)
        engine = AlertEngine(store, cache, bus, notifier=notifier)

        critical = validate_telemetry(make_payload(temperature=65))
        [alert] = await asyncio.wait_for(engine.evaluate(critical, temperature_thresholds), timeout=1.0)

        assert alert.severity == AlertSeverity.CRITICAL
        assert engine.pending_pushes == 1

        release.set()
        await engine.drain()
        assert engine.pending_pushes == 0
        notifier.notify.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_webhook_failure_is_logged_not_raised(
        self, store, cache, bus, make_payload, temperature_thresholds
    ):
        notifier = MagicMock(spec=PushNotifier)
        notifier.notify = AsyncMock(side_effect=RuntimeError("webhook down"))
        engine = AlertEngine(store, cache, bus, notifier=notifier)

        [alert] = await engine.evaluate(validate_telemetry(make_payload(temperature=65)), temperature_thresholds)
        await engine.drain()

        assert alert.is_critical
        assert engine.pending_pushes == 0


# =============================================================================
# ALERT SERVICE
# =============================================================================

class TestAlertService:

    @pytest.fixture
    def raised(self, store, make_payload, temperature_thresholds):
        return _raise(store, make_payload(temperature=50), temperature_thresholds)

    @pytest.mark.asyncio
    async def test_acknowledge(self, store, cache, bus, raised):
        service = AlertService(store, cache, bus)
        sub = bus.subscribe("global")

        alert = await service.acknowledge(raised.id, by="operator")

        assert alert.status == AlertStatus.ACKNOWLEDGED
        assert alert.acknowledged_by == "operator"
        assert alert.acknowledged_at is not None
        assert service.get(raised.id).status == AlertStatus.ACKNOWLEDGED
        [event] = sub.drain()
        assert event.event == "alert_acknowledged"

    @pytest.mark.asyncio
    async def test_resolve_default_resolution(self, store, cache, bus, raised):
        service = AlertService(store, cache, bus)
        sub = bus.subscribe("global")

        alert = await service.resolve(raised.id)

        assert alert.status == AlertStatus.RESOLVED
        assert alert.resolution == DEFAULT_RESOLUTION
        assert service.active_for_device("device-1") == []
        assert [e.event for e in sub.drain()] == ["alert_resolved"]

    @pytest.mark.asyncio
    async def test_unknown_alert(self, store, cache, bus):
        service = AlertService(store, cache, bus)

        with pytest.raises(NotFound):
            await service.acknowledge("missing")
        with pytest.raises(NotFound):
            service.get("missing")

    def test_get_falls_back_to_store(self, store, bus, raised):
        service = AlertService(store, InMemoryHotCache(), bus)
        assert service.get(raised.id).id == raised.id

    def test_queries(self, store, cache, bus, raised):
        service = AlertService(store, cache, bus)

        assert [a.id for a in service.active_for_device("device-1")] == [raised.id]
        assert [a.id for a in service.active_for_battery("battery-1")] == [raised.id]
        assert service.critical() == []
        assert service.for_device("device-1", status="resolved") == []


# =============================================================================
# PUSH NOTIFIER
# =============================================================================

class TestPushNotifier:

    @pytest.fixture
    def alert(self, store, make_payload, temperature_thresholds):
        return _raise(store, make_payload(temperature=65), temperature_thresholds)

    def test_trigger_posts_alert_document(self, alert):
        session = MagicMock()
        session.post.return_value = MagicMock(ok=True, status_code=200)
        notifier = PushNotifier("http://hooks.local/alerts", "secret", timeout=2.0, session=session)

        assert notifier.trigger(alert) is True
        url = session.post.call_args.args[0]
        kwargs = session.post.call_args.kwargs
        assert url == "http://hooks.local/alerts"
        assert kwargs["headers"] == {"Authorization": "Bearer secret"}
        assert kwargs["timeout"] == 2.0
        assert kwargs["json"]["event"] == "critical_alert"
        assert kwargs["json"]["alert"]["id"] == alert.id
        assert kwargs["json"]["alert"]["severity"] == "critical"

    def test_no_token_no_auth_header(self, alert):
        session = MagicMock()
        session.post.return_value = MagicMock(ok=True, status_code=204)

        PushNotifier("http://hooks.local/alerts", session=session).trigger(alert)

        assert session.post.call_args.kwargs["headers"] == {}

    def test_trigger_http_error(self, alert):
        session = MagicMock()
        session.post.return_value = MagicMock(ok=False, status_code=500, text="boom")
        notifier = PushNotifier("http://hooks.local/alerts", session=session)

        assert notifier.trigger(alert) is False

    def test_trigger_connection_error(self, alert):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("refused")
        notifier = PushNotifier("http://hooks.local/alerts", session=session)

        assert notifier.trigger(alert) is False
