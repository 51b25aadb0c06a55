"""Adaptadores de almacenamiento.

- interfaces: contratos PrimaryStore / HotCache / TimeSeriesSink
- sql_store, timeseries: implementaciones SQLAlchemy
- redis_cache: HotCache sobre Redis
- memory: implementaciones en memoria (tests, desarrollo local)
"""
