"""Background sweeps that reclaim expired cache entries and idle rate-limit windows."""

import asyncio
import logging
from typing import Callable

from fastapi import FastAPI

logger = logging.getLogger(__name__)


async def sweep_periodically(name: str, interval: float, sweep: Callable[[], int]) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            removed = sweep()
        except Exception:
            logger.exception("%s sweep failed", name)
            continue
        if removed:
            logger.info("Cleaned up %d %s", removed, name)


def start_housekeeping(app: FastAPI) -> None:
    settings = app.state.settings
    app.state.housekeeping = [
        asyncio.create_task(
            sweep_periodically(
                "expired cache entries",
                settings.cache_sweep_interval_seconds,
                app.state.cache.cleanup,
            )
        ),
        asyncio.create_task(
            sweep_periodically(
                "old rate limit entries",
                settings.rate_limit_sweep_interval_seconds,
                app.state.rate_limiter.cleanup,
            )
        ),
    ]


async def stop_housekeeping(app: FastAPI) -> None:
    tasks = getattr(app.state, "housekeeping", [])
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    app.state.housekeeping = []
