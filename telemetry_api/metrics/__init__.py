"""Contadores de ingesta."""

from .ingestion_stats import IngestionStats
