from __future__ import annotations

import asyncio
import logging

from config.store import ConfigStore
from memory.service import MemoryService

logger = logging.getLogger(__name__)


async def run_purge_once(*, memory: MemoryService, config_store: ConfigStore) -> int:
    """
    Physically delete turns older than the decay max age.

    Decay on its own only hides old turns from prompts; this sweep is what
    actually reclaims the rows, and only when decay is enabled.
    """
    config = config_store.snapshot().memory_config()
    if not (config.enable_memory and config.decay_enabled):
        return 0
    result = await memory.purge_expired(config.decay_max_days)
    if not result.ok:
        logger.warning("[Memory] purge skipped: %s", result.error)
        return 0
    if result.value:
        logger.info("[Memory] purged %d expired entries (max_age_days=%d)", result.value, config.decay_max_days)
    return int(result.value)


async def maintenance_loop(
    *,
    memory: MemoryService,
    config_store: ConfigStore,
    interval_seconds: int = 3600,
) -> None:
    while True:
        try:
            await run_purge_once(memory=memory, config_store=config_store)
        except Exception as e:
            logger.error("[Memory] maintenance loop error: %s", e)

        await asyncio.sleep(max(60, int(interval_seconds)))
