"""Consultas de solo lectura para la API."""
