"""Lifecycle sweep task."""

from oddsline.services.lifecycle_service import run_lifecycle_sweep


async def sweep_lifecycle() -> dict[str, int]:
    return await run_lifecycle_sweep()
