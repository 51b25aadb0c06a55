"""Tests de TelemetryQueryService sobre servicios en memoria."""

from datetime import datetime, timedelta, timezone

import pytest

from telemetry_api.errors import NotFound
from telemetry_api.storage.interfaces import latest_telemetry_key


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestTelemetryQueries:

    @pytest.mark.asyncio
    async def test_pages(self, services, make_payload):
        for i in range(3):
            await services.pipeline.submit(make_payload(ts=T0 + timedelta(minutes=i), soc=60 + i))

        page = services.queries.by_device("device-1", limit=2)
        assert page.total == 3
        assert [r.battery.soc for r in page.items] == [62, 61]

        asc = services.queries.by_battery("battery-1", sort="asc", skip=1)
        assert [r.battery.soc for r in asc.items] == [61, 62]

        history = services.queries.history(device_ids=["device-1"])
        assert [r.battery.soc for r in history] == [60, 61, 62]

    @pytest.mark.asyncio
    async def test_latest_falls_back_to_store(self, services, make_payload):
        await services.pipeline.submit(make_payload())
        services.cache.delete(latest_telemetry_key("device", "device-1"))

        assert services.queries.latest(device_id="device-1").battery_id == "battery-1"

    def test_latest_unknown(self, services):
        with pytest.raises(NotFound):
            services.queries.latest(battery_id="nope")

    def test_latest_requires_exactly_one_id(self, services):
        with pytest.raises(ValueError):
            services.queries.latest()
        with pytest.raises(ValueError):
            services.queries.latest(device_id="a", battery_id="b")

    @pytest.mark.asyncio
    async def test_stats_period(self, services, make_payload):
        now = T0 + timedelta(days=2)
        await services.pipeline.submit(make_payload(ts=now - timedelta(hours=2), soc=40))
        await services.pipeline.submit(make_payload(ts=now - timedelta(days=1, hours=1), soc=80))

        last_6h = services.queries.stats(battery_id="battery-1", period="6h", now=now)
        last_7d = services.queries.stats(battery_id="battery-1", period="7d", now=now)
        unknown = services.queries.stats(battery_id="battery-1", period="fortnight", now=now)

        assert last_6h.count == 1 and last_6h.avg_soc == 40
        assert last_7d.count == 2 and last_7d.avg_soc == 60
        # Periodo desconocido -> 24h
        assert unknown.count == 1

    @pytest.mark.asyncio
    async def test_histories(self, services, make_payload):
        for i in range(3):
            await services.pipeline.submit(
                make_payload(
                    ts=T0 + timedelta(minutes=20 * i),
                    voltage=48 + i,
                    location={"coordinates": [103.8 + i / 100, 1.35]},
                )
            )
        start, end = T0 - timedelta(hours=1), T0 + timedelta(hours=2)

        voltage = services.queries.voltage_history("battery-1", start, end, interval="1h")
        assert voltage == [{"timestamp": T0, "total": 49.0}]

        soc = services.queries.soc_history("battery-1", start, end, interval="30m")
        assert len(soc) == 2

        temperature = services.queries.temperature_history("battery-1", start, end)
        assert temperature[0]["average"] == 30.0

        locations = services.queries.location_history("device-1", start, end)
        assert [p["longitude"] for p in locations] == pytest.approx([103.8, 103.81, 103.82])
        assert all("speed" not in p for p in locations)
