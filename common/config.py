from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from dotenv import load_dotenv


DEFAULT_FLEET_FALLBACK = ("batt-001", "batt-002", "batt-003", "batt-004", "batt-005")


def _default_env_file() -> str:
    repo_root = Path(__file__).resolve().parents[1]
    return str(repo_root / ".env")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str
    redis_url: str
    use_redis: bool

    telemetry_cache_ttl_seconds: int
    alert_cache_ttl_seconds: int
    threshold_cache_ttl_seconds: int
    telemetry_retention_days: int
    sink_timeout_seconds: float
    fanout_queue_size: int

    rul_window_length: int
    rul_scale_days: float
    rul_critical_days: float
    rul_warning_days: float
    rul_good_days: float
    rul_model_path: str
    fleet_fallback_battery_ids: Tuple[str, ...]

    alert_push_url: str
    alert_push_token: str

    cb_failure_threshold: int
    cb_recovery_timeout_seconds: float
    cb_success_threshold: int


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("TELEMETRY_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    fallback_raw = os.getenv("FLEET_FALLBACK_BATTERY_IDS", ",".join(DEFAULT_FLEET_FALLBACK))
    fallback_ids = tuple(b.strip() for b in fallback_raw.split(",") if b.strip())

    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./telemetry.db"),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        use_redis=_env_bool("USE_REDIS", "true"),
        telemetry_cache_ttl_seconds=int(os.getenv("TELEMETRY_CACHE_TTL_SECONDS", "3600")),
        alert_cache_ttl_seconds=int(os.getenv("ALERT_CACHE_TTL_SECONDS", "86400")),
        threshold_cache_ttl_seconds=int(os.getenv("THRESHOLD_CACHE_TTL_SECONDS", "86400")),
        telemetry_retention_days=int(os.getenv("TELEMETRY_RETENTION_DAYS", "30")),
        sink_timeout_seconds=float(os.getenv("SINK_TIMEOUT_SECONDS", "3.0")),
        fanout_queue_size=int(os.getenv("FANOUT_QUEUE_SIZE", "1000")),
        rul_window_length=int(os.getenv("RUL_WINDOW_LENGTH", "50")),
        rul_scale_days=float(os.getenv("RUL_SCALE_DAYS", "365")),
        rul_critical_days=float(os.getenv("RUL_CRITICAL_DAYS", "30")),
        rul_warning_days=float(os.getenv("RUL_WARNING_DAYS", "90")),
        rul_good_days=float(os.getenv("RUL_GOOD_DAYS", "180")),
        rul_model_path=os.getenv("RUL_MODEL_PATH", "models/rul_model.joblib"),
        fleet_fallback_battery_ids=fallback_ids,
        alert_push_url=os.getenv("ALERT_PUSH_URL", ""),
        alert_push_token=os.getenv("ALERT_PUSH_TOKEN", ""),
        cb_failure_threshold=int(os.getenv("CB_FAILURE_THRESHOLD", "5")),
        cb_recovery_timeout_seconds=float(os.getenv("CB_RECOVERY_TIMEOUT", "30")),
        cb_success_threshold=int(os.getenv("CB_SUCCESS_THRESHOLD", "2")),
    )
