"""Composición de servicios: adaptadores reales (SQL + Redis) o en memoria."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from common.config import Settings, get_settings
from common.db import get_engine
from rul_service.config import RulConfig
from rul_service.predictive_engine import PredictiveEngine
from rul_service.scorers import HeuristicScorer, Scorer

from .alerts.alert_service import AlertService
from .alerts.push_notifier import PushNotifier
from .fanout.bus import FanOutBus, InMemoryFanOutBus
from .fanout.redis_bus import RedisFanOutBus
from .metrics.ingestion_stats import IngestionStats
from .pipeline.circuit_breaker import CircuitBreakerConfig
from .pipeline.hooks import PipelineHooks
from .pipeline.ingestion import IngestionPipeline
from .pipeline.sink_runner import SinkRunner
from .queries.telemetry_queries import TelemetryQueryService
from .storage.interfaces import HotCache, PrimaryStore, TimeSeriesSink
from .storage.memory import InMemoryHotCache, InMemoryPrimaryStore
from .storage.redis_cache import RedisConnection, RedisHotCache
from .storage.sql_store import SqlPrimaryStore
from .storage.timeseries import InMemoryTimeSeriesSink, SqlTimeSeriesSink
from .thresholds import CachedThresholdStore, SqlThresholdStore, StaticThresholdStore, ThresholdStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    store: PrimaryStore
    cache: HotCache
    timeseries: TimeSeriesSink
    thresholds: ThresholdStore
    bus: FanOutBus
    stats: IngestionStats
    runner: SinkRunner
    hooks: PipelineHooks
    pipeline: IngestionPipeline
    alerts: AlertService
    queries: TelemetryQueryService
    predictive: PredictiveEngine
    redis: Optional[RedisConnection] = None

    async def close(self) -> None:
        await self.hooks.drain()
        await self.pipeline.alert_engine.drain()
        await self.bus.close()
        if self.redis is not None:
            self.redis.disconnect()


def _assemble(
    settings: Settings,
    store: PrimaryStore,
    cache: HotCache,
    timeseries: TimeSeriesSink,
    thresholds: ThresholdStore,
    bus: FanOutBus,
    predictive: PredictiveEngine,
    redis_conn: Optional[RedisConnection] = None,
) -> Services:
    stats = IngestionStats()
    runner = SinkRunner(
        timeout_seconds=settings.sink_timeout_seconds,
        breaker_config=CircuitBreakerConfig.from_settings(settings),
    )
    hooks = PipelineHooks(stats)
    notifier: Optional[PushNotifier] = None
    if settings.alert_push_url:
        notifier = PushNotifier(
            settings.alert_push_url,
            settings.alert_push_token,
            timeout=settings.sink_timeout_seconds,
        )
        logger.info("[PUSH] Critical alert webhook enabled url=%s", settings.alert_push_url)
    pipeline = IngestionPipeline(
        store,
        timeseries,
        cache,
        thresholds,
        bus,
        runner=runner,
        stats=stats,
        hooks=hooks,
        telemetry_ttl_seconds=settings.telemetry_cache_ttl_seconds,
        alert_ttl_seconds=settings.alert_cache_ttl_seconds,
        notifier=notifier,
    )
    return Services(
        settings=settings,
        store=store,
        cache=cache,
        timeseries=timeseries,
        thresholds=thresholds,
        bus=bus,
        stats=stats,
        runner=runner,
        hooks=hooks,
        pipeline=pipeline,
        alerts=AlertService(store, cache, bus, alert_ttl_seconds=settings.alert_cache_ttl_seconds),
        queries=TelemetryQueryService(store, cache, timeseries),
        predictive=predictive,
        redis=redis_conn,
    )


def build_services(settings: Optional[Settings] = None, *, engine: Optional[Engine] = None) -> Services:
    """Servicios de producción: SQL como almacén primario y de series, Redis si está disponible."""
    settings = settings or get_settings()
    engine = engine or get_engine(settings)

    store = SqlPrimaryStore(engine, retention_days=settings.telemetry_retention_days)
    timeseries = SqlTimeSeriesSink(engine)

    redis_conn: Optional[RedisConnection] = None
    cache: HotCache
    bus: FanOutBus
    if settings.use_redis:
        redis_conn = RedisConnection(settings.redis_url)
        if redis_conn.connect():
            cache = RedisHotCache.from_connection(redis_conn)
            bus = RedisFanOutBus(
                redis_conn.client,
                queue_size=settings.fanout_queue_size,
                publish_timeout=settings.sink_timeout_seconds,
            )
        else:
            logger.warning("[REDIS] Unavailable; using in-memory cache and fan-out")
            redis_conn = None
            cache = InMemoryHotCache()
            bus = InMemoryFanOutBus(queue_size=settings.fanout_queue_size)
    else:
        cache = InMemoryHotCache()
        bus = InMemoryFanOutBus(queue_size=settings.fanout_queue_size)

    thresholds = CachedThresholdStore(
        SqlThresholdStore(engine), cache, ttl_seconds=settings.threshold_cache_ttl_seconds
    )
    predictive = PredictiveEngine.from_config(store, RulConfig.from_settings(settings))

    logger.info(
        "[INGEST] Services ready store=sql cache=%s bus=%s model=%s",
        type(cache).__name__,
        type(bus).__name__,
        "trained" if predictive.uses_trained_model else "heuristic",
    )
    return _assemble(settings, store, cache, timeseries, thresholds, bus, predictive, redis_conn)


def build_in_memory_services(
    settings: Optional[Settings] = None,
    *,
    thresholds: Optional[ThresholdStore] = None,
    scorer: Optional[Scorer] = None,
    heuristic: Optional[HeuristicScorer] = None,
) -> Services:
    """Todo en memoria (tests, demos). Sin modelo entrenado salvo que se inyecte."""
    settings = settings or get_settings()
    store = InMemoryPrimaryStore(retention_days=settings.telemetry_retention_days)
    predictive = PredictiveEngine(
        store,
        scorer,
        config=RulConfig.from_settings(settings),
        heuristic=heuristic,
    )
    return _assemble(
        settings,
        store,
        InMemoryHotCache(),
        InMemoryTimeSeriesSink(),
        thresholds or StaticThresholdStore(),
        InMemoryFanOutBus(queue_size=settings.fanout_queue_size),
        predictive,
    )
