"""
Analytics sink - non-blocking search logging

Completed searches are queued and written by a background worker, so the
search path never waits on the log store.
"""
import asyncio
from datetime import timedelta
from typing import List, Optional
import logging

from .config import settings
from .domain.models import SearchLog, TrendingQuery
from .domain.repositories import SearchLogStore
from .kafka_producer import KafkaProducerManager

logger = logging.getLogger(__name__)


class AnalyticsSink:
    """Queue-backed search log dispatcher"""

    def __init__(
        self,
        store: SearchLogStore,
        producer: Optional[KafkaProducerManager] = None,
        queue_size: int = settings.ANALYTICS_QUEUE_SIZE,
        drain_timeout: float = settings.ANALYTICS_DRAIN_TIMEOUT,
    ):
        self.store = store
        self.producer = producer
        self.drain_timeout = drain_timeout
        self.queue: "asyncio.Queue[SearchLog]" = asyncio.Queue(maxsize=queue_size)
        self._worker: Optional[asyncio.Task] = None

    async def start(self):
        """Start the background worker"""
        self._worker = asyncio.create_task(self._run())
        logger.info("Analytics sink started")

    async def stop(self):
        """Drain pending logs, then stop the worker"""
        if not self._worker:
            return

        try:
            await asyncio.wait_for(self.queue.join(), timeout=self.drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Dropping {self.queue.qsize()} undelivered search logs on shutdown")

        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Analytics sink stopped")

    def record(self, log: SearchLog) -> bool:
        """
        Enqueue a search log without waiting

        Returns:
            True if queued, False if dropped
        """
        try:
            self.queue.put_nowait(log)
            return True
        except asyncio.QueueFull:
            logger.warning(f"Analytics queue full, dropping search log for user {log.requester_id}")
            return False

    async def _run(self):
        while True:
            log = await self.queue.get()
            try:
                await self._dispatch(log)
            finally:
                self.queue.task_done()

    async def _dispatch(self, log: SearchLog):
        try:
            await self.store.append(log)
        except Exception as e:
            logger.error(f"Failed to log search: {e}")

        if self.producer:
            await self.producer.publish_search_performed(log)

    async def trending(self, limit: int, window_days: int = settings.TRENDING_WINDOW_DAYS) -> List[TrendingQuery]:
        """Most frequent queries within the window"""
        try:
            return await self.store.trending(limit, timedelta(days=window_days))
        except Exception as e:
            logger.error(f"Trending searches error: {e}")
            return []

    async def related(self, query: str, limit: int) -> List[str]:
        """Logged queries similar to the given one"""
        try:
            return await self.store.related(query, limit)
        except Exception as e:
            logger.error(f"Related queries error: {e}")
            return []
