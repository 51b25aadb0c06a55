"""Servicio de telemetría de baterías: ingesta, alertas, fan-out y consultas."""
