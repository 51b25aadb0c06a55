"""Tests de los adaptadores PrimaryStore / HotCache.

Los mismos escenarios corren contra SQLite en memoria y contra el store en memoria.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from common.db import get_engine
from telemetry_api.factory import build_services
from telemetry_api.schemas import (
    AlertCandidate,
    AlertCategory,
    AlertSeverity,
    AlertStatus,
    AlertType,
)
from telemetry_api.storage.interfaces import AlertFilter, TelemetryFilter
from telemetry_api.storage.memory import InMemoryHotCache, InMemoryPrimaryStore
from telemetry_api.storage.redis_cache import RedisConnection, RedisHotCache
from telemetry_api.storage.sql_store import SqlPrimaryStore
from telemetry_api.validation import validate_telemetry


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["sql", "memory"])
def store(request):
    if request.param == "sql":
        return SqlPrimaryStore(get_engine(url="sqlite://"), retention_days=30)
    return InMemoryPrimaryStore(retention_days=30)


def _candidate(device_id="device-1", alert_type=AlertType.TEMPERATURE_HIGH, severity=AlertSeverity.WARNING):
    return AlertCandidate(
        type=alert_type,
        severity=severity,
        category=AlertCategory.BATTERY,
        device_id=device_id,
        battery_id="battery-1",
        message="Battery temperature (50°C) above maximum threshold (45°C)",
        data={"current": 50.0, "threshold": 45.0, "unit": "°C"},
    )


# =============================================================================
# TELEMETRY
# =============================================================================

class TestTelemetryPersistence:

    def test_find_sorted_and_paginated(self, store, make_payload):
        for i in range(5):
            store.insert_telemetry(validate_telemetry(make_payload(ts=T0 + timedelta(minutes=i), soc=50 + i)))

        flt = TelemetryFilter.for_device("device-1")
        desc = store.find_telemetry(flt, descending=True, skip=1, limit=2)
        asc = store.find_telemetry(flt, descending=False, limit=2)

        assert [r.battery.soc for r in desc] == [53, 52]
        assert [r.battery.soc for r in asc] == [50, 51]
        assert store.count_telemetry(flt) == 5
        assert desc[0].timestamp.tzinfo is not None

    def test_time_window_filter(self, store, make_payload):
        records = [validate_telemetry(make_payload(ts=T0 + timedelta(hours=h))) for h in range(4)]
        store.insert_telemetry_many(records)

        flt = TelemetryFilter.for_battery(
            "battery-1", start=T0 + timedelta(hours=1), end=T0 + timedelta(hours=2)
        )
        assert store.count_telemetry(flt) == 2

    def test_latest_and_distinct_batteries(self, store, make_payload):
        store.insert_telemetry_many([
            validate_telemetry(make_payload("device-1", "batt-b", ts=T0)),
            validate_telemetry(make_payload("device-1", "batt-a", ts=T0 + timedelta(minutes=5), soc=10)),
        ])

        latest = store.latest_telemetry(device_id="device-1")
        assert latest.battery_id == "batt-a"
        assert store.distinct_battery_ids(10) == ["batt-a", "batt-b"]
        assert store.distinct_battery_ids(1) == ["batt-a"]

    def test_stats(self, store, make_payload):
        store.insert_telemetry_many([
            validate_telemetry(make_payload(ts=T0, voltage=48, soc=40, temperature=20)),
            validate_telemetry(make_payload(ts=T0 + timedelta(minutes=1), voltage=50, soc=60, temperature=30)),
        ])

        stats = store.telemetry_stats(TelemetryFilter.for_battery("battery-1"))

        assert stats.count == 2
        assert stats.avg_voltage == pytest.approx(49)
        assert stats.min_soc == 40 and stats.max_soc == 60
        assert stats.avg_temperature == pytest.approx(25)
        assert stats.first_timestamp == T0
        assert stats.last_timestamp == T0 + timedelta(minutes=1)

    def test_purge_expired(self, store, make_payload):
        store.insert_telemetry_many([
            validate_telemetry(make_payload(ts=T0 - timedelta(days=40))),
            validate_telemetry(make_payload(ts=T0)),
        ])

        assert store.purge_expired_telemetry(T0) == 1
        assert store.count_telemetry(TelemetryFilter()) == 1


# =============================================================================
# ALERTS
# =============================================================================

class TestAlertPersistence:

    def test_upsert_increments_active_alert(self, store):
        first = store.upsert_active_alert(_candidate(), T0)
        second = store.upsert_active_alert(_candidate(), T0 + timedelta(minutes=1))
        third = store.upsert_active_alert(_candidate(), T0 + timedelta(minutes=2))

        assert first.created and not second.created and not third.created
        assert third.alert.id == first.alert.id
        assert third.alert.occurrences == 3
        assert third.alert.last_occurrence == T0 + timedelta(minutes=2)
        assert third.alert.created_at == T0

    def test_distinct_types_are_distinct_alerts(self, store):
        store.upsert_active_alert(_candidate(), T0)
        store.upsert_active_alert(_candidate(alert_type=AlertType.SOC_LOW), T0)

        assert len(store.find_alerts(AlertFilter(device_id="device-1"))) == 2

    def test_resolved_alert_not_reused(self, store):
        first = store.upsert_active_alert(_candidate(), T0).alert
        store.update_alert(first.id, {"status": AlertStatus.RESOLVED, "resolution": "fixed"})

        again = store.upsert_active_alert(_candidate(), T0 + timedelta(hours=1))

        assert again.created
        assert again.alert.id != first.id
        resolved = store.find_alert(first.id)
        assert resolved.status == AlertStatus.RESOLVED
        assert resolved.resolution == "fixed"

    def test_find_alerts_ordered_by_severity_then_recency(self, store):
        store.upsert_active_alert(_candidate("d1"), T0)
        store.upsert_active_alert(_candidate("d2", severity=AlertSeverity.CRITICAL), T0)
        store.upsert_active_alert(_candidate("d3"), T0 + timedelta(minutes=5))

        alerts = store.find_alerts(AlertFilter(status="active"))
        assert [a.device_id for a in alerts] == ["d2", "d3", "d1"]

        critical = store.find_alerts(AlertFilter(status="active", severity="critical"))
        assert [a.device_id for a in critical] == ["d2"]

    def test_update_unknown_alert(self, store):
        assert store.update_alert("missing", {"status": AlertStatus.RESOLVED}) is None
        assert store.find_alert("missing") is None

    def test_concurrent_upserts_are_linearized(self, store):
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda i: store.upsert_active_alert(_candidate(), T0), range(10)))

        active = store.find_alerts(AlertFilter(device_id="device-1", status="active"))
        assert len(active) == 1
        assert active[0].occurrences == 10
        assert sum(1 for r in results if r.created) == 1


# =============================================================================
# HOT CACHE
# =============================================================================

class TestInMemoryHotCache:

    def test_ttl_expiry(self):
        now = [100.0]
        cache = InMemoryHotCache(clock=lambda: now[0])

        cache.set("device:d1:latest_telemetry", {"soc": 50}, ttl_seconds=10)
        assert cache.get("device:d1:latest_telemetry") == {"soc": 50}

        now[0] += 10
        assert cache.get("device:d1:latest_telemetry") is None

    def test_values_are_copied(self):
        cache = InMemoryHotCache()
        value = {"soc": 50}
        cache.set("k", value, 60)
        value["soc"] = 0

        assert cache.get("k") == {"soc": 50}

    def test_delete(self):
        cache = InMemoryHotCache()
        cache.set("k", 1, 60)
        cache.delete("k")
        assert cache.get("k") is None
        assert cache.keys() == []


# =============================================================================
# REDIS
# =============================================================================

class TestRedisHotCache:

    def test_json_round_trip_with_ttl(self):
        client = MagicMock()
        cache = RedisHotCache(client)

        cache.set("alert:a1", {"severity": "critical"}, ttl_seconds=86400)

        key, raw = client.set.call_args.args
        assert key == "alert:a1"
        assert client.set.call_args.kwargs == {"ex": 86400}

        client.get.return_value = raw
        assert cache.get("alert:a1") == {"severity": "critical"}

    def test_corrupted_entry_is_a_miss(self):
        client = MagicMock()
        client.get.return_value = "{not json"
        assert RedisHotCache(client).get("k") is None

    def test_errors_propagate(self):
        client = MagicMock()
        client.get.side_effect = RedisConnectionError("down")
        with pytest.raises(RedisConnectionError):
            RedisHotCache(client).get("k")


class TestRedisConnection:

    def test_unreachable_server(self):
        conn = RedisConnection("redis://127.0.0.1:1/0", socket_timeout=0.2)

        assert conn.connect() is False
        assert conn.client is None
        assert conn.ping() is False
        with pytest.raises(RuntimeError):
            RedisHotCache.from_connection(conn)

    def test_build_services_falls_back_to_memory(self, settings):
        fallback = replace(settings, use_redis=True, redis_url="redis://127.0.0.1:1/0")

        services = build_services(fallback)

        assert services.redis is None
        assert isinstance(services.cache, InMemoryHotCache)
