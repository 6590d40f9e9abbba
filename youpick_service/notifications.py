"""
In-process fan-out of post insert notifications
"""
from typing import Awaitable, Callable, List
import logging

from .schemas import PostCreatedEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[PostCreatedEvent], Awaitable[None]]


class PostNotifier:
    """Delivers each post insert to every live subscriber"""

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns the function that removes it"""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: PostCreatedEvent) -> None:
        """Deliver event; one failing subscriber does not stop the rest"""
        for callback in list(self._subscribers):
            try:
                await callback(event)
            except Exception as e:
                logger.error(f"Post notification subscriber failed for {event.post_id}: {e}")


# Global notifier instance
post_notifier = PostNotifier()


def get_post_notifier() -> PostNotifier:
    """Dependency for getting the post notifier"""
    return post_notifier
