"""
Kafka consumer that turns post insert messages into feed notifications
"""
from aiokafka import AIOKafkaConsumer
from pydantic import ValidationError
from typing import Optional
import json
import asyncio
import logging

from .config import settings
from .notifications import PostNotifier, post_notifier
from .schemas import PostCreatedEvent

logger = logging.getLogger(__name__)


class KafkaConsumerManager:
    """Manage Kafka consumer for post insert notifications"""

    def __init__(self, notifier: PostNotifier):
        self.notifier = notifier
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
        """Consume and dispatch messages from Kafka"""
        logger.info("Started consuming Kafka messages")

        try:
            async for message in self.consumer:
                if not self.running:
                    break
                await self.handle_message(message.topic, message.value)

        except asyncio.CancelledError:
            logger.info("Kafka consumer task cancelled")
        except Exception as e:
            logger.error(f"Error in message consumption loop: {e}")

    async def handle_message(self, topic: str, value: dict):
        """Validate a post insert message and hand it to the notifier"""
        if topic != settings.KAFKA_TOPIC_POST_CREATED:
            logger.warning(f"Unknown topic: {topic}")
            return

        try:
            event = PostCreatedEvent.model_validate(value)
        except ValidationError as e:
            logger.error(f"Invalid post created event: {e}")
            return

        logger.info(f"Post {event.post_id} created - notifying {self.notifier.subscriber_count} feeds")
        await self.notifier.publish(event)


# Global Kafka consumer instance
kafka_consumer = KafkaConsumerManager(post_notifier)
