"""Tests de proyección a series temporales y agregación."""

from datetime import datetime, timedelta, timezone

import pytest

from common.db import get_engine
from telemetry_api.errors import ValidationError
from telemetry_api.storage.timeseries import (
    InMemoryTimeSeriesSink,
    SqlTimeSeriesSink,
    aggregate_points,
    telemetry_to_points,
)
from telemetry_api.validation import validate_telemetry


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["sql", "memory"])
def sink(request):
    if request.param == "sql":
        return SqlTimeSeriesSink(get_engine(url="sqlite://"))
    return InMemoryTimeSeriesSink()


class TestProjection:

    def test_measurements_and_tags(self, make_payload):
        record = validate_telemetry(
            make_payload(location={"coordinates": [103.8198, 1.3521], "speed": 12.5})
        )
        points = {p.measurement: p for p in telemetry_to_points(record)}

        assert set(points) == {
            "battery_voltage",
            "battery_current",
            "battery_temperature",
            "battery_soc",
            "battery_health",
            "battery_cycles",
            "system",
            "location",
        }
        assert points["battery_voltage"].fields == {
            "total": 48.2, "cell_1": 3.7, "cell_2": 3.71, "cell_3": 3.69,
        }
        assert points["battery_temperature"].fields["ambient"] == 24.0
        assert points["location"].fields["longitude"] == 103.8198
        assert points["location"].fields["latitude"] == 1.3521
        assert points["battery_soc"].tags == {"deviceId": "device-1", "batteryId": "battery-1"}

    def test_absent_sections_produce_no_points(self):
        record = validate_telemetry({"deviceId": "d", "batteryId": "b", "battery": {"soc": 10}})
        assert [p.measurement for p in telemetry_to_points(record)] == ["battery_soc"]


class TestAggregation:

    ROWS = [
        {"timestamp": T0, "field": "total", "value": 48.0},
        {"timestamp": T0 + timedelta(minutes=30), "field": "total", "value": 50.0},
        {"timestamp": T0 + timedelta(minutes=70), "field": "total", "value": 52.0},
    ]

    def test_hourly_mean(self):
        out = aggregate_points(self.ROWS, fields=["total"], aggregation="mean", interval="1h")

        assert [p["timestamp"] for p in out] == [T0, T0 + timedelta(hours=1)]
        assert [p["total"] for p in out] == [49.0, 52.0]

    def test_max_aggregation(self):
        out = aggregate_points(self.ROWS, aggregation="max", interval="1h")
        assert [p["total"] for p in out] == [50.0, 52.0]

    def test_raw_points(self):
        out = aggregate_points(self.ROWS, aggregation="last", interval="0s")
        assert [p["total"] for p in out] == [48.0, 50.0, 52.0]

    def test_unknown_field_returns_empty(self):
        assert aggregate_points(self.ROWS, fields=["soc"]) == []

    def test_invalid_arguments(self):
        with pytest.raises(ValidationError) as exc:
            aggregate_points(self.ROWS, aggregation="median")
        assert exc.value.field == "aggregation"

        with pytest.raises(ValidationError) as exc:
            aggregate_points(self.ROWS, interval="5y")
        assert exc.value.field == "interval"

        # Se valida aunque no haya filas
        with pytest.raises(ValidationError):
            aggregate_points([], interval="bogus")

    @pytest.mark.parametrize(
        "aggregation, expected",
        [("mean", 20.0), ("sum", 40.0), ("count", 2.0), ("min", 10.0), ("max", 30.0)],
    )
    def test_series_sharing_timestamp_are_not_collapsed(self, aggregation, expected):
        rows = [
            {"timestamp": T0, "field": "total", "value": 10.0},
            {"timestamp": T0, "field": "total", "value": 30.0},
        ]

        [point] = aggregate_points(rows, aggregation=aggregation, interval="1h")

        assert point["timestamp"] == T0
        assert point["total"] == expected

    def test_fields_aggregated_independently(self):
        rows = self.ROWS + [{"timestamp": T0 + timedelta(minutes=10), "field": "cell_1", "value": 3.7}]

        out = aggregate_points(rows, aggregation="count", interval="1h")

        assert out[0] == {"timestamp": T0, "total": 2.0, "cell_1": 1.0}
        assert out[1] == {"timestamp": T0 + timedelta(hours=1), "total": 1.0}


class TestSinks:

    def test_write_and_query(self, sink, make_payload):
        for i, voltage in enumerate([48.0, 50.0, 52.0]):
            record = validate_telemetry(make_payload(ts=T0 + timedelta(minutes=35 * i), voltage=voltage))
            sink.write_points(telemetry_to_points(record))

        out = sink.query(
            "battery_voltage",
            {"batteryId": "battery-1"},
            ["total"],
            T0 - timedelta(hours=1),
            T0 + timedelta(hours=3),
            interval="1h",
        )
        assert [p["total"] for p in out] == [49.0, 52.0]

    def test_query_filters_tags_and_window(self, sink, make_payload):
        sink.write_points(telemetry_to_points(validate_telemetry(make_payload("d1", "b1", ts=T0))))
        sink.write_points(telemetry_to_points(validate_telemetry(make_payload("d2", "b2", ts=T0))))

        assert len(sink.query("battery_soc", {"batteryId": "b2"}, ["soc"], interval="0s")) == 1
        assert sink.query("battery_soc", {"batteryId": "b2"}, ["soc"], start=T0 + timedelta(seconds=1)) == []

    def test_write_point_helper(self, sink):
        assert sink.write_point("battery_soc", {"batteryId": "b1"}, {"soc": 40.0}, T0) == 1

    def test_device_query_aggregates_every_battery(self, sink, make_payload):
        # Dos baterías del mismo device reportan en el mismo instante
        sink.write_points(telemetry_to_points(validate_telemetry(make_payload("d", "b1", ts=T0, voltage=10))))
        sink.write_points(telemetry_to_points(validate_telemetry(make_payload("d", "b2", ts=T0, voltage=30))))

        mean = sink.query("battery_voltage", {"deviceId": "d"}, ["total"], aggregation="mean", interval="1h")
        count = sink.query("battery_voltage", {"deviceId": "d"}, ["total"], aggregation="count", interval="1h")

        assert [p["total"] for p in mean] == [20.0]
        assert [p["total"] for p in count] == [2.0]
