"""Tests de las tareas de housekeeping y su CLI."""

import json
import random
from datetime import datetime, timedelta, timezone

import pytest

from jobs import cli
from jobs.housekeeping import fleet_report, purge_expired_telemetry
from rul_service.config import RulConfig
from rul_service.predictive_engine import PredictiveEngine
from rul_service.scorers import HeuristicScorer
from telemetry_api.storage.interfaces import TelemetryFilter
from telemetry_api.storage.memory import InMemoryPrimaryStore
from telemetry_api.validation import validate_telemetry


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestHousekeeping:

    def test_purge_expired(self, make_payload):
        store = InMemoryPrimaryStore(retention_days=7)
        store.insert_telemetry(validate_telemetry(make_payload(ts=T0 - timedelta(days=10))))
        store.insert_telemetry(validate_telemetry(make_payload(ts=T0)))

        assert purge_expired_telemetry(store, now=T0) == 1
        assert store.count_telemetry(TelemetryFilter()) == 1

    def test_fleet_report(self):
        engine = PredictiveEngine(
            InMemoryPrimaryStore(),
            config=RulConfig(fleet_fallback_ids=("BAT001",)),
            heuristic=HeuristicScorer(random.Random(5)),
        )

        overview = fleet_report(engine, limit=5)

        assert overview.total_batteries == 1
        assert 30 <= overview.average_rul <= 365


class TestCli:

    @pytest.fixture(autouse=True)
    def _settings(self, monkeypatch, settings):
        monkeypatch.setattr(cli, "get_settings", lambda: settings)

    def test_purge_task(self):
        assert cli.main(["purge-telemetry"]) == 0

    def test_fleet_report_json(self, capsys, settings):
        assert cli.main(["fleet-report", "--limit", "3", "--json"]) == 0

        doc = json.loads(capsys.readouterr().out)
        assert doc["totalBatteries"] == len(settings.fleet_fallback_battery_ids)
        assert set(doc["statusDistribution"]) == {"critical", "warning", "good"}

    def test_unknown_task(self):
        with pytest.raises(SystemExit):
            cli.main(["reindex"])
