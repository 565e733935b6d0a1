"""
Kafka consumer for post mutation events

Any post change by an author can alter what the author and the author's
friends see, so their cached search results are dropped.
"""
from aiokafka import AIOKafkaConsumer
from typing import Optional
import json
import asyncio
import logging

from .cache import SearchCache
from .config import settings
from .domain.repositories import SocialGraph

logger = logging.getLogger(__name__)


class KafkaConsumerManager:
    """Manage Kafka consumer for cache invalidation"""

    def __init__(self, cache: SearchCache, social_graph: SocialGraph):
        self.cache = cache
        self.social_graph = social_graph
        self.consumer: Optional[AIOKafkaConsumer] = None
        self.running = False
        self.task: Optional[asyncio.Task] = None

    async def start(self):
        """Start Kafka consumer"""
        if not settings.KAFKA_ENABLED:
            logger.warning("Kafka is disabled")
            return

        try:
            self.consumer = AIOKafkaConsumer(
                settings.KAFKA_TOPIC_POST_CREATED,
                settings.KAFKA_TOPIC_POST_UPDATED,
                settings.KAFKA_TOPIC_POST_DELETED,
                bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
                group_id=settings.KAFKA_CONSUMER_GROUP,
                value_deserializer=lambda m: json.loads(m.decode('utf-8')),
                auto_offset_reset='latest',
                enable_auto_commit=True,
            )
            await self.consumer.start()
            logger.info(f"Kafka consumer started with group '{settings.KAFKA_CONSUMER_GROUP}'")

            self.running = True
            self.task = asyncio.create_task(self._consume_messages())

        except Exception as e:
            logger.error(f"Failed to start Kafka consumer: {e}")
            self.consumer = None

    async def stop(self):
        """Stop Kafka consumer"""
        self.running = False

        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass

        if self.consumer:
            await self.consumer.stop()
            logger.info("Kafka consumer stopped")

    async def _consume_messages(self):
        """Consume and process messages from Kafka"""
        logger.info("Started consuming Kafka messages")

        try:
            async for message in self.consumer:
                if not self.running:
                    break

                try:
                    await self.handle_event(message.topic, message.value)
                except Exception as e:
                    logger.error(f"Error processing message: {e}")

        except asyncio.CancelledError:
            logger.info("Kafka consumer task cancelled")
        except Exception as e:
            logger.error(f"Error in message consumption loop: {e}")

    async def handle_event(self, topic: str, event: dict) -> int:
        """
        Invalidate cached results affected by a post mutation

        Event format:
        {
            "event_type": "post_created" | "post_updated" | "post_deleted",
            "post_id": ...,
            "user_id": 123
        }

        Returns:
            Number of cache entries removed
        """
        if topic not in (
            settings.KAFKA_TOPIC_POST_CREATED,
            settings.KAFKA_TOPIC_POST_UPDATED,
            settings.KAFKA_TOPIC_POST_DELETED,
        ):
            logger.warning(f"Unknown topic: {topic}")
            return 0

        author_id = event.get("user_id")
        if not author_id:
            logger.error(f"Invalid {event.get('event_type')} event: missing user_id")
            return 0

        logger.info(f"Handling {event.get('event_type')}: post_id={event.get('post_id')}, user_id={author_id}")

        try:
            friends = await self.social_graph.accepted_friends_of(author_id)
        except Exception as e:
            logger.error(f"Failed to resolve friends of user {author_id}, clearing all cached results: {e}")
            return await self.cache.invalidate()

        removed = 0
        for user_id in {author_id} | friends:
            removed += await self.cache.invalidate(user_id)
        return removed
