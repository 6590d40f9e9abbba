"""
Community feed - page fetch with author/like joins, radius filter and
optimistic like mutations
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Set
import asyncio
import logging

from .config import settings
from .errors import AuthorizationFailure, ValidationFailure, best_effort
from .geo import within_radius
from .schemas import FeedFilter, FeedPost, FeedTab, PostCreatedEvent, PostDraft

logger = logging.getLogger(__name__)

FEED_FAILED_MESSAGE = "Failed to load feed"


class MutationStatus(str, Enum):
    """Lifecycle of an optimistic mutation"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


@dataclass
class LikeMutation:
    """A like toggle and where it ended up"""
    post_id: str
    liked: bool
    status: MutationStatus = MutationStatus.PENDING


def _start_of_day(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


class FeedAggregator:
    """
    One viewer's view of the community feed.

    Each fetch loads a page of posts and joins author profiles and like
    state with one batched query per collection. While started, every post
    insert notification triggers a full refetch with the last filter.
    """

    def __init__(
        self,
        store,
        viewer_id: Optional[str] = None,
        notifier=None,
        kafka_producer=None,
        page_size: int = settings.FEED_PAGE_SIZE,
    ):
        self.store = store
        self.viewer_id = viewer_id
        self.notifier = notifier
        self.kafka_producer = kafka_producer
        self.page_size = page_size

        self.posts: List[FeedPost] = []
        self.loading = False
        self.error: Optional[str] = None
        self.filter = FeedFilter()
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._changes: Optional["asyncio.Queue[List[FeedPost]]"] = None
        self._generation = 0

    # Lifecycle
    def start(self) -> None:
        """Subscribe to post insert notifications"""
        if self.notifier is None or self._unsubscribe is not None:
            return
        self._unsubscribe = self.notifier.subscribe(self._on_post_created)

    def close(self) -> None:
        """Release the notification subscription"""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()

    async def _on_post_created(self, event: PostCreatedEvent) -> None:
        logger.debug(f"Refetching feed after insert of post {event.post_id}")
        await self.refresh()
        if self._changes is not None:
            self._changes.put_nowait(self.posts)

    async def stream(self, feed_filter: Optional[FeedFilter] = None) -> AsyncIterator[List[FeedPost]]:
        """
        Yield the first page, then the refetched page after every post insert.

        The notifier subscription lives as long as the iteration; closing or
        cancelling the iterator releases it.
        """
        self._changes = asyncio.Queue()
        self.start()
        try:
            yield await self.fetch_page(feed_filter)
            while True:
                yield await self._changes.get()
        finally:
            self.close()
            self._changes = None

    # Reads
    async def refresh(self) -> List[FeedPost]:
        """Refetch with the last filter"""
        return await self.fetch_page(self.filter)

    async def fetch_page(self, feed_filter: Optional[FeedFilter] = None) -> List[FeedPost]:
        """
        Fetch, join and filter one page of posts.

        Only the most recent call updates posts, loading and error; an older
        call that finishes later still returns its own page.
        """
        feed_filter = feed_filter or FeedFilter()
        self._generation += 1
        generation = self._generation
        self.filter = feed_filter
        self.loading = True
        self.error = None

        try:
            rows = await self.store.list_feed_posts(
                city=feed_filter.city,
                post_type=feed_filter.post_type,
                since=_start_of_day() if feed_filter.tab == FeedTab.TODAY else None,
                limit=self.page_size,
            )
            posts = await self._join(rows)
        except Exception as e:
            logger.error(f"Feed fetch failed: {e}")
            if generation == self._generation:
                self.posts = []
                self.error = FEED_FAILED_MESSAGE
                self.loading = False
            return []

        if self._radius_applies(feed_filter):
            posts = [
                post for post in posts
                if within_radius(feed_filter.center, feed_filter.radius_miles, post.lat, post.lng)
            ]

        if feed_filter.tab == FeedTab.TRENDING:
            posts.sort(key=lambda p: (p.like_count, p.created_at), reverse=True)

        if generation != self._generation:
            logger.debug("Discarding state update from a superseded feed fetch")
            return posts

        self.posts = posts
        self.loading = False
        return posts

    async def load_post(self, post_id: str) -> Optional[FeedPost]:
        """Load a single post into local state, e.g. before mutating it"""
        row = await self.store.get_feed_post(post_id)
        if row is None:
            return None
        post = (await self._join([row]))[0]
        self.posts = [p for p in self.posts if p.id != post_id] + [post]
        return post

    async def _join(self, rows: List[Dict[str, Any]]) -> List[FeedPost]:
        """Merge author profiles and like state onto rows, one query per collection"""
        author_ids = {row["user_id"] for row in rows if row.get("user_id")}
        profiles = await self.store.get_profiles(sorted(author_ids))
        profile_map = {p["id"]: p for p in profiles}

        likes = await self.store.get_likes([row["id"] for row in rows])
        like_counts: Dict[str, int] = {}
        my_likes: Set[str] = set()
        for like in likes:
            like_counts[like["post_id"]] = like_counts.get(like["post_id"], 0) + 1
            if self.viewer_id and like["user_id"] == self.viewer_id:
                my_likes.add(like["post_id"])

        return [
            self._enrich(row, profile_map, like_counts, my_likes)
            for row in rows
        ]

    @staticmethod
    def _radius_applies(feed_filter: FeedFilter) -> bool:
        # A city filter already scopes the page; the radius only narrows open feeds
        return (
            not feed_filter.city
            and feed_filter.center is not None
            and feed_filter.radius_miles is not None
        )

    @staticmethod
    def _enrich(
        row: Dict[str, Any],
        profile_map: Dict[str, Dict[str, Any]],
        like_counts: Dict[str, int],
        my_likes: Set[str]
    ) -> FeedPost:
        profile = profile_map.get(row.get("user_id")) or {}

        if row.get("is_bot") and row.get("bot_display_name"):
            display_name = row["bot_display_name"]
        elif row.get("is_anonymous"):
            display_name = None
        else:
            display_name = profile.get("display_name")

        if row.get("is_bot") and row.get("bot_avatar_url"):
            avatar_url = row["bot_avatar_url"]
        elif row.get("is_anonymous"):
            avatar_url = None
        else:
            avatar_url = profile.get("avatar_url")

        return FeedPost(**{
            **row,
            "username": profile.get("username"),
            "display_name": display_name,
            "avatar_url": avatar_url,
            "like_count": like_counts.get(row["id"], 0),
            "liked_by_me": row["id"] in my_likes,
        })

    # Mutations
    def _require_viewer(self) -> str:
        if not self.viewer_id:
            raise AuthorizationFailure()
        return self.viewer_id

    def _apply_like(self, post_id: str, liked: bool) -> None:
        updated = []
        for post in self.posts:
            if post.id == post_id and post.liked_by_me != liked:
                delta = 1 if liked else -1
                post = post.model_copy(update={
                    "liked_by_me": liked,
                    "like_count": max(0, post.like_count + delta),
                })
            updated.append(post)
        self.posts = updated

    def get_post(self, post_id: str) -> Optional[FeedPost]:
        for post in self.posts:
            if post.id == post_id:
                return post
        return None

    async def toggle_like(self, post_id: str) -> LikeMutation:
        """
        Like or unlike a post.

        The new state is applied locally before the write is awaited. If the
        write fails the inverse is applied and the mutation is marked rolled
        back.
        """
        viewer_id = self._require_viewer()
        post = self.get_post(post_id) or await self.load_post(post_id)
        if post is None:
            raise ValidationFailure(f"Post {post_id} does not exist")

        mutation = LikeMutation(post_id=post_id, liked=not post.liked_by_me)
        self._apply_like(post_id, mutation.liked)

        try:
            if mutation.liked:
                await self.store.insert_like(post_id, viewer_id)
            else:
                await self.store.delete_like(post_id, viewer_id)
        except Exception as e:
            logger.error(f"Like update failed for post {post_id}, rolling back: {e}")
            self._apply_like(post_id, not mutation.liked)
            mutation.status = MutationStatus.ROLLED_BACK
            return mutation

        mutation.status = MutationStatus.CONFIRMED
        return mutation

    async def create_post(self, draft: PostDraft) -> str:
        """
        Insert a post as the viewer.

        The new post is not spliced into local state; it arrives with the
        refetch triggered by its insert notification.
        """
        viewer_id = self._require_viewer()
        row = await self.store.insert_post(viewer_id, draft.model_dump(exclude_none=True))
        post_id = str(row["id"])
        logger.info(f"User {viewer_id} created post {post_id}")

        if self.kafka_producer is not None:
            await best_effort("Post created notification", self.kafka_producer.publish_post_created(
                post_id, viewer_id, row.get("city"),
            ))
        return post_id
