from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from youpick_service.cache import AsyncResultCache, ResultCache
from youpick_service.schemas import EventRecord


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubSearchClient:
    """Records every call; replies with queued results or a default payload."""

    def __init__(self, events: list[EventRecord] | None = None) -> None:
        self.events = events or []
        self.calls: list[tuple] = []
        self.replies: list[Any] = []
        self.gates: list[asyncio.Event | None] = []

    async def search_events(self, subject_name, subject_category, timeframe, location_scope=None):
        self.calls.append((subject_name, subject_category, timeframe, location_scope))
        reply = self.replies.pop(0) if self.replies else self.events
        gate = self.gates.pop(0) if self.gates else None
        if gate is not None:
            await gate.wait()
        if isinstance(reply, Exception):
            raise reply
        return list(reply)


class StubProducer:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.tracked: list[tuple] = []
        self.posts_created: list[tuple] = []

    async def track(self, event_name, user_id=None, metadata=None):
        if self.fail:
            raise RuntimeError("broker down")
        self.tracked.append((event_name, user_id, metadata))
        return True

    async def publish_post_created(self, post_id, user_id, city=None):
        if self.fail:
            raise RuntimeError("broker down")
        self.posts_created.append((post_id, user_id, city))
        return True


class StubFeedStore:
    """In-memory stand-in for the asyncpg Database feed queries."""

    def __init__(self) -> None:
        self.posts: list[dict] = []
        self.profiles: dict[str, dict] = {}
        self.likes: list[dict] = []
        self.calls: list[tuple] = []
        self.fail_reads = False
        self.fail_writes = False

    def add_post(self, post_id: str, *, minutes_ago: int = 0, **fields) -> dict:
        row = {
            "id": post_id,
            "user_id": "author-1",
            "post_type": "spin_result",
            "title": f"Post {post_id}",
            "result_name": "Joe's Diner",
            "created_at": datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc) - timedelta(minutes=minutes_ago),
            "lat": None,
            "lng": None,
        }
        row.update(fields)
        self.posts.append(row)
        return row

    async def list_feed_posts(self, city=None, post_type=None, since=None, limit=50):
        self.calls.append(("list_feed_posts", city, post_type, since, limit))
        if self.fail_reads:
            raise ConnectionError("database unavailable")
        rows = [
            p for p in self.posts
            if (city is None or p.get("city") == city)
            and (post_type is None or p["post_type"] == post_type)
            and (since is None or p["created_at"] >= since)
        ]
        rows.sort(key=lambda p: p["created_at"], reverse=True)
        return [dict(r) for r in rows[:limit]]

    async def get_feed_post(self, post_id):
        self.calls.append(("get_feed_post", post_id))
        for p in self.posts:
            if p["id"] == post_id:
                return dict(p)
        return None

    async def get_profiles(self, user_ids):
        user_ids = list(user_ids)
        self.calls.append(("get_profiles", tuple(user_ids)))
        return [self.profiles[u] for u in user_ids if u in self.profiles]

    async def get_likes(self, post_ids):
        post_ids = list(post_ids)
        self.calls.append(("get_likes", tuple(post_ids)))
        return [dict(l) for l in self.likes if l["post_id"] in post_ids]

    async def insert_like(self, post_id, user_id):
        self.calls.append(("insert_like", post_id, user_id))
        if self.fail_writes:
            raise ConnectionError("write failed")
        self.likes.append({"post_id": post_id, "user_id": user_id})

    async def delete_like(self, post_id, user_id):
        self.calls.append(("delete_like", post_id, user_id))
        if self.fail_writes:
            raise ConnectionError("write failed")
        self.likes = [l for l in self.likes if not (l["post_id"] == post_id and l["user_id"] == user_id)]

    async def insert_post(self, user_id, values):
        self.calls.append(("insert_post", user_id, values))
        if self.fail_writes:
            raise ConnectionError("write failed")
        row = self.add_post(f"new-{len(self.posts) + 1}", user_id=user_id, **values)
        return {"id": row["id"], "user_id": user_id, "city": row.get("city"), "created_at": row["created_at"]}

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def result_cache(clock) -> AsyncResultCache:
    return AsyncResultCache(ResultCache(ttl=600, clock=clock))


@pytest.fixture
def search_client() -> StubSearchClient:
    return StubSearchClient()


@pytest.fixture
def producer() -> StubProducer:
    return StubProducer()


@pytest.fixture
def feed_store() -> StubFeedStore:
    return StubFeedStore()
