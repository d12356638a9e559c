"""
Read-only REST view of connected clients and server statistics.
"""
from fastapi import APIRouter, Depends

from ollama_relay.core.dependencies import get_registry, get_started_at
from ollama_relay.schemas.ws import ClientSummary
from ollama_relay.services.connection_registry import ConnectionRegistry
from ollama_relay.services.stats_service import collect_stats

router = APIRouter()


@router.get("/clients", response_model=list[ClientSummary], response_model_exclude_none=True)
async def list_clients(registry: ConnectionRegistry = Depends(get_registry)):
    """Clients currently connected to the activity WebSocket."""
    return registry.snapshot()


@router.get("/stats")
async def server_stats(
    registry: ConnectionRegistry = Depends(get_registry),
    started_at: float = Depends(get_started_at),
):
    return collect_stats(registry, started_at)
