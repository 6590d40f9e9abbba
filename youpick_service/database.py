"""
Database connection and feed queries for YouPick Discovery Service
"""
import asyncpg
from typing import Optional, List, Dict, Any, Iterable
from datetime import datetime, timezone
import json
import logging

from .config import settings

logger = logging.getLogger(__name__)

POST_COLUMNS = [
    "post_type", "post_subtype", "title", "body", "result_place_id",
    "result_name", "result_category", "result_address", "lat", "lng",
    "city", "is_anonymous", "metadata",
]


class Database:
    """PostgreSQL database connection manager using asyncpg"""

    def __init__(self):
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self):
        """Create database connection pool"""
        try:
            self.pool = await asyncpg.create_pool(
                settings.DATABASE_URL,
                min_size=1,
                max_size=settings.DB_POOL_SIZE,
                command_timeout=60,
            )
            logger.info("Database connection pool created successfully")

            await self._init_schema()
        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")
            raise

    async def disconnect(self):
        """Close database connection pool"""
        if self.pool:
            await self.pool.close()
            logger.info("Database connection pool closed")

    async def _init_schema(self):
        """Initialize database schema"""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    id TEXT PRIMARY KEY,
                    username VARCHAR(50),
                    display_name VARCHAR(100),
                    avatar_url TEXT
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS feed_posts (
                    id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
                    user_id TEXT,
                    post_type VARCHAR(50) NOT NULL,
                    post_subtype VARCHAR(50),
                    title VARCHAR(200) NOT NULL DEFAULT '',
                    body TEXT,
                    result_place_id TEXT,
                    result_name VARCHAR(200) NOT NULL DEFAULT '',
                    result_category VARCHAR(100),
                    result_address TEXT,
                    lat DOUBLE PRECISION,
                    lng DOUBLE PRECISION,
                    city VARCHAR(120),
                    is_anonymous BOOLEAN NOT NULL DEFAULT FALSE,
                    is_bot BOOLEAN NOT NULL DEFAULT FALSE,
                    bot_display_name VARCHAR(100),
                    bot_avatar_url TEXT,
                    visibility VARCHAR(20) NOT NULL DEFAULT 'public',
                    metadata JSONB,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    expires_at TIMESTAMPTZ
                )
            """)

            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_feed_posts_created
                ON feed_posts (created_at DESC)
            """)

            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_feed_posts_city_created
                ON feed_posts (city, created_at DESC)
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS post_likes (
                    post_id TEXT NOT NULL REFERENCES feed_posts (id) ON DELETE CASCADE,
                    user_id TEXT NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    PRIMARY KEY (post_id, user_id)
                )
            """)

            logger.info("Database schema initialized successfully")

    async def fetch_one(self, query: str, *args) -> Optional[Dict[str, Any]]:
        """Fetch a single row"""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, *args)
            return dict(row) if row else None

    async def fetch_all(self, query: str, *args) -> List[Dict[str, Any]]:
        """Fetch all rows"""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, *args)
            return [dict(row) for row in rows]

    async def execute(self, query: str, *args) -> str:
        """Execute a query"""
        async with self.pool.acquire() as conn:
            return await conn.execute(query, *args)

    # Feed-specific queries
    async def list_feed_posts(
        self,
        city: Optional[str] = None,
        post_type: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = settings.FEED_PAGE_SIZE
    ) -> List[Dict[str, Any]]:
        """Public, unexpired posts, newest first"""
        conditions = [
            "visibility = 'public'",
            "(expires_at IS NULL OR expires_at > $1)",
        ]
        args: List[Any] = [datetime.now(timezone.utc)]

        if post_type:
            args.append(post_type)
            conditions.append(f"post_type = ${len(args)}")
        if city:
            args.append(city)
            conditions.append(f"city = ${len(args)}")
        if since:
            args.append(since)
            conditions.append(f"created_at >= ${len(args)}")

        args.append(limit)
        query = f"""
            SELECT * FROM feed_posts
            WHERE {' AND '.join(conditions)}
            ORDER BY created_at DESC
            LIMIT ${len(args)}
        """
        rows = await self.fetch_all(query, *args)
        for row in rows:
            if isinstance(row.get("metadata"), str):
                row["metadata"] = json.loads(row["metadata"])
        return rows

    async def get_feed_post(self, post_id: str) -> Optional[Dict[str, Any]]:
        """Single post by id"""
        row = await self.fetch_one("SELECT * FROM feed_posts WHERE id = $1", post_id)
        if row and isinstance(row.get("metadata"), str):
            row["metadata"] = json.loads(row["metadata"])
        return row

    async def get_profiles(self, user_ids: Iterable[str]) -> List[Dict[str, Any]]:
        """Public profile fields for a set of users, in one query"""
        user_ids = list(user_ids)
        if not user_ids:
            return []
        query = """
            SELECT id, username, display_name, avatar_url
            FROM profiles
            WHERE id = ANY($1::text[])
        """
        return await self.fetch_all(query, user_ids)

    async def get_likes(self, post_ids: Iterable[str]) -> List[Dict[str, Any]]:
        """Like rows for a set of posts, in one query"""
        post_ids = list(post_ids)
        if not post_ids:
            return []
        query = """
            SELECT post_id, user_id
            FROM post_likes
            WHERE post_id = ANY($1::text[])
        """
        return await self.fetch_all(query, post_ids)

    async def insert_like(self, post_id: str, user_id: str) -> None:
        """Like a post"""
        query = """
            INSERT INTO post_likes (post_id, user_id)
            VALUES ($1, $2)
            ON CONFLICT DO NOTHING
        """
        await self.execute(query, post_id, user_id)

    async def delete_like(self, post_id: str, user_id: str) -> None:
        """Remove a like"""
        query = """
            DELETE FROM post_likes
            WHERE post_id = $1 AND user_id = $2
        """
        await self.execute(query, post_id, user_id)

    async def insert_post(self, user_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a post row owned by user_id and return it"""
        columns = [c for c in POST_COLUMNS if c in values]
        args = [values[c] for c in columns]
        if "metadata" in columns:
            args[columns.index("metadata")] = json.dumps(values["metadata"])

        columns.insert(0, "user_id")
        args.insert(0, user_id)
        placeholders = ", ".join(f"${i}" for i in range(1, len(args) + 1))
        query = f"""
            INSERT INTO feed_posts ({', '.join(columns)})
            VALUES ({placeholders})
            RETURNING id, user_id, city, created_at
        """
        return await self.fetch_one(query, *args)


# Global database instance
db = Database()


async def get_db() -> Database:
    """Dependency for getting database instance"""
    return db
