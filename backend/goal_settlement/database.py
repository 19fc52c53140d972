from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from .config import settings
from .logger import get_logger
from .services.goal_cache import GoalCache, InMemoryGoalCache, PostgresGoalCache

logger = get_logger(__name__)

# Shared async pool backing the durable goal cache.
pool: AsyncConnectionPool | None = None


async def init_db_pool() -> None:
    global pool

    # Without DATABASE_URL the service runs on the in-memory cache.
    if not settings.database_url:
        return

    pool = AsyncConnectionPool(
        conninfo=settings.database_url,
        open=False,
        min_size=1,
        max_size=10,
        kwargs={"autocommit": True, "row_factory": dict_row},
    )
    await pool.open()


async def close_db_pool() -> None:
    global pool

    if pool is None:
        return

    await pool.close()
    pool = None


async def build_goal_cache() -> GoalCache:
    """Postgres-backed cache when the pool is open, in-memory otherwise."""
    if pool is None:
        logger.warning("goal_cache_in_memory", reason="DATABASE_URL is not configured")
        return InMemoryGoalCache()

    cache = PostgresGoalCache(pool)
    await cache.ensure_schema()
    return cache
