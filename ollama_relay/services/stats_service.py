"""
Server statistics: periodic log line and the payload behind /stats.
"""
import asyncio
import logging
import time
from datetime import datetime, timezone

from ollama_relay.services.connection_registry import ConnectionRegistry

logger = logging.getLogger(__name__)


def collect_stats(registry: ConnectionRegistry, started_at: float) -> dict:
    return {
        "total_clients": len(registry),
        "uptime_seconds": int(time.monotonic() - started_at),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def run_stats_logger(
    registry: ConnectionRegistry,
    started_at: float,
    interval: float,
) -> None:
    """Log client count and uptime every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        stats = collect_stats(registry, started_at)
        logger.info(
            "Server stats: %d clients connected, uptime: %ds",
            stats["total_clients"],
            stats["uptime_seconds"],
        )
