"""
Periodic removal of expired cache entries
Uses APScheduler so the sweep runs on the application's event loop
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from streamgate.services.cache import TieredCache


class CacheSweeper:
    """Runs TieredCache.cleanup_expired on a fixed interval"""

    def __init__(self, cache: TieredCache, interval_seconds: int = 120):
        self.cache = cache
        self.interval_seconds = interval_seconds
        self.scheduler = AsyncIOScheduler()
        self._is_running = False

    async def sweep_job(self) -> None:
        """Cache sweep task"""
        try:
            removed = self.sweep_now()
            if removed:
                logger.info(f"Cache sweep removed {removed} expired entries")
        except Exception as e:
            logger.error(f"Error in scheduled cache sweep: {e}")

    def sweep_now(self) -> int:
        return self.cache.cleanup_expired()

    def start(self) -> None:
        """Start the scheduler; must be called with a running event loop"""
        if self._is_running:
            logger.warning("Cache sweeper is already running")
            return

        self.scheduler.add_job(
            self.sweep_job,
            trigger="interval",
            seconds=self.interval_seconds,
            id="cache_sweep_job",
            name="Cache Sweeper",
            replace_existing=True,
        )
        self.scheduler.start()
        self._is_running = True

        logger.info(f"Cache sweeper started: every {self.interval_seconds} seconds")

    def stop(self) -> None:
        """Stop the scheduler"""
        if not self._is_running:
            return

        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("Cache sweeper stopped")

    def is_running(self) -> bool:
        return self._is_running
