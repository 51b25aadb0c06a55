"""Routers HTTP y WebSocket."""
