"""
Periodic server statistics.
"""
import asyncio
import logging
import time

import pytest

from ollama_relay.services.connection_registry import ConnectionRegistry
from ollama_relay.services.stats_service import run_stats_logger
from tests.conftest import FakeWebSocket


@pytest.mark.asyncio
async def test_run_stats_logger_logs_client_count_until_cancelled(
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO, logger="ollama_relay.services.stats_service")
    registry = ConnectionRegistry()
    registry.register(FakeWebSocket())  # type: ignore[arg-type]

    task = asyncio.create_task(run_stats_logger(registry, time.monotonic(), interval=0.01))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    lines = [
        record.getMessage()
        for record in caplog.records
        if record.name == "ollama_relay.services.stats_service"
    ]
    assert lines
    assert lines[0].startswith("Server stats: 1 clients connected, uptime: ")
