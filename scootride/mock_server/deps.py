import asyncio

from fastapi import Request

from scootride.mock_server.state import MockStore


async def get_store(request: Request) -> MockStore:
    return request.app.state.store


async def simulate_latency(request: Request) -> None:
    delay_ms = request.app.state.settings.mock_latency_ms
    if delay_ms > 0:
        await asyncio.sleep(delay_ms / 1000)
