"""Evaluación de umbrales, deduplicación y ciclo de vida de alertas."""
