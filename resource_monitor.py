import psutil
import logging
import asyncio
from typing import Optional

from token_metadata import MetadataCache
from watcher import WalletWatcher

logger = logging.getLogger(__name__)

class ResourceMonitor:
    def __init__(self, watcher: WalletWatcher, cache: Optional[MetadataCache] = None, interval=300):
        self.watcher = watcher
        self.cache = cache
        self.interval = interval
        self._task = None

    async def start(self):
        """Start periodic health logging"""
        self._task = asyncio.create_task(self._monitor_loop())
        logger.info(f"Resource monitor started (interval={self.interval}s)")

    async def stop(self):
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            logger.info("Resource monitor stopped")

    async def _monitor_loop(self):
        while True:
            self.log_resources()
            await asyncio.sleep(self.interval)

    def snapshot(self) -> dict:
        process = psutil.Process()
        stats = self.watcher.stats()
        return {
            "cpu_percent": process.cpu_percent(interval=None),
            "memory_rss": process.memory_info().rss / 1024 / 1024,
            "tracked_wallets": stats["tracked_wallets"],
            "queued_events": stats["queued_events"],
            "cached_tokens": len(self.cache) if self.cache is not None else 0,
        }

    def log_resources(self):
        try:
            data = self.snapshot()
            logger.info(
                f"Health | "
                f"CPU: {data['cpu_percent']:.1f}% | "
                f"Memory: {data['memory_rss']:.1f}MB | "
                f"Wallets: {data['tracked_wallets']} | "
                f"Queued: {data['queued_events']} | "
                f"Cached tokens: {data['cached_tokens']}"
            )
        except Exception as e:
            logger.error(f"Resource monitoring error: {str(e)}")
