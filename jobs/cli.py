"""CLI de housekeeping: ejecuta UNA iteración de la tarea pedida y termina."""

from __future__ import annotations

import argparse
import json
import logging
from typing import List, Optional

from common.config import get_settings
from common.db import get_engine
from rul_service.config import RulConfig
from rul_service.predictive_engine import PredictiveEngine
from telemetry_api.storage.sql_store import SqlPrimaryStore

from .housekeeping import fleet_report, purge_expired_telemetry

logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    p = argparse.ArgumentParser(description="Battery telemetry housekeeping jobs")
    sub = p.add_subparsers(dest="task", required=True)
    sub.add_parser("purge-telemetry", help="delete telemetry past its retention window")
    report = sub.add_parser("fleet-report", help="log the predictive maintenance fleet overview")
    report.add_argument("--limit", type=int, default=10)
    report.add_argument("--json", action="store_true", help="print the overview as JSON")
    args = p.parse_args(argv)

    settings = get_settings()
    store = SqlPrimaryStore(get_engine(settings), retention_days=settings.telemetry_retention_days)

    if args.task == "purge-telemetry":
        purge_expired_telemetry(store)
        return 0

    engine = PredictiveEngine.from_config(store, RulConfig.from_settings(settings))
    overview = fleet_report(engine, limit=args.limit)
    if args.json:
        print(json.dumps(overview.to_document(), indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
