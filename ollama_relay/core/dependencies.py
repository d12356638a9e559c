"""
FastAPI dependencies for app-scoped services.

The registry and upstream client are created in the application lifespan
and stored on ``app.state``; handlers receive them through these functions,
which tests replace via ``app.dependency_overrides``.
"""
from fastapi.requests import HTTPConnection

from ollama_relay.services.connection_registry import ConnectionRegistry
from ollama_relay.services.ollama_client import OllamaClient


def get_registry(connection: HTTPConnection) -> ConnectionRegistry:
    """Connection registry of the running app."""
    return connection.app.state.registry


def get_ollama_client(connection: HTTPConnection) -> OllamaClient:
    """Shared upstream client of the running app."""
    return connection.app.state.ollama_client


def get_started_at(connection: HTTPConnection) -> float:
    """Monotonic timestamp recorded at startup."""
    return connection.app.state.started_at
