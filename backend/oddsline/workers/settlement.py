"""Periodic settlement pass over recently completed results.

Catches results that arrived after the finish event fired, and wagers
placed by team pair without an exact match id.
"""

from oddsline.services.settlement_service import settle_pending_results


async def run_settlement() -> dict[str, int]:
    return await settle_pending_results()
