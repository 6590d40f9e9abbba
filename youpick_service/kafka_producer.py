"""
Kafka producer for post notifications and tracking events
"""
from aiokafka import AIOKafkaProducer
from datetime import datetime, timezone
from typing import Optional, Dict, Any
import json
import logging

from .config import settings

logger = logging.getLogger(__name__)


class KafkaProducerManager:
    """Manage Kafka producer for event publishing"""

    def __init__(self):
        self.producer: Optional[AIOKafkaProducer] = None

    async def start(self):
        """Start Kafka producer"""
        if not settings.KAFKA_ENABLED:
            logger.warning("Kafka is disabled")
            return

        try:
            self.producer = AIOKafkaProducer(
                bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
                value_serializer=lambda v: json.dumps(v).encode('utf-8'),
                key_serializer=lambda k: k.encode('utf-8') if k else None,
            )
            await self.producer.start()
            logger.info(f"Kafka producer started at {settings.KAFKA_BOOTSTRAP_SERVERS}")
        except Exception as e:
            logger.error(f"Failed to start Kafka producer: {e}")
            self.producer = None

    async def stop(self):
        """Stop Kafka producer"""
        if self.producer:
            await self.producer.stop()
            logger.info("Kafka producer stopped")

    async def publish_event(
        self,
        topic: str,
        key: Optional[str],
        event_data: Dict[str, Any]
    ) -> bool:
        """
        Publish an event to Kafka

        Returns False when the producer is not running. Send errors propagate;
        callers decide whether the event is critical.
        """
        if not self.producer:
            logger.debug("Kafka producer not available, skipping event publishing")
            return False

        await self.producer.send(topic, value=event_data, key=key)
        logger.debug(f"Published event to topic '{topic}' with key '{key}'")
        return True

    async def publish_post_created(
        self,
        post_id: str,
        user_id: Optional[str],
        city: Optional[str] = None
    ) -> bool:
        """Announce a new feed post so subscribed feeds refetch"""
        event = {
            "event_type": "post.created",
            "post_id": post_id,
            "user_id": user_id,
            "city": city,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        return await self.publish_event(settings.KAFKA_TOPIC_POST_CREATED, post_id, event)

    async def track(
        self,
        event_name: str,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Publish an analytics event"""
        event = {
            "event_name": event_name,
            "user_id": user_id,
            "metadata": metadata or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        return await self.publish_event(settings.KAFKA_TOPIC_TRACKING, user_id, event)


# Global Kafka producer instance
kafka_producer = KafkaProducerManager()


async def get_kafka_producer() -> KafkaProducerManager:
    """Dependency for getting Kafka producer instance"""
    return kafka_producer
