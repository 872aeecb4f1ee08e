"""
Persistence gateway for Quest Tracker
SQLite-based durable storage for the tracked game collection

Thin contract over the relational store:
- execute(statement, params) -> affected row count
- query(statement, params) -> rows as dicts
- transaction(body) -> atomic, all-or-nothing execution of body's statements

Performance optimizations:
- Connection pooling with aiosqlite for true async operations
- Schema creation off the event loop via asyncio.to_thread
"""

import sqlite3
import asyncio
from pathlib import Path
from typing import Optional, List, Dict, Any, Awaitable, Callable, Sequence, Mapping, Union
from contextlib import asynccontextmanager

import aiosqlite

from quest_tracker.constants import ALL_STATUSES
from quest_tracker.exceptions import PersistenceError
from quest_tracker.logger import setup_logger

logger = setup_logger()

Params = Union[Sequence[Any], Mapping[str, Any]]

_STATUS_VALUES = ", ".join(f"'{status}'" for status in ALL_STATUSES)

SCHEMA_STATEMENTS = (
    f"""
    CREATE TABLE IF NOT EXISTS tracked_games (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        status TEXT NOT NULL CHECK (status IN ({_STATUS_VALUES})),
        priority INTEGER CHECK (priority IS NULL OR priority > 0),
        personal_rating REAL,
        completion_date TEXT,
        notes TEXT,
        date_added TEXT NOT NULL,
        updated_at TEXT NOT NULL DEFAULT '',
        selected_platform_id INTEGER,
        selected_platform_name TEXT,
        summary TEXT,
        rating REAL,
        cover TEXT,
        genres TEXT NOT NULL DEFAULT '[]',
        platforms TEXT NOT NULL DEFAULT '[]',
        release_dates TEXT NOT NULL DEFAULT '[]',
        screenshots TEXT NOT NULL DEFAULT '[]',
        involved_companies TEXT NOT NULL DEFAULT '[]',
        CHECK (status = 'backlog' OR priority IS NULL)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tracked_games_status ON tracked_games(status)",
    "CREATE INDEX IF NOT EXISTS idx_tracked_games_backlog_priority ON tracked_games(status, priority)",
)


class Transaction:
    """
    Statement runner bound to one open transaction.

    Only valid inside PersistenceGateway.transaction(); every statement runs on
    the same connection and is committed or rolled back together.
    """

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    async def execute(self, statement: str, params: Params = ()) -> int:
        cursor = await self._conn.execute(statement, params)
        try:
            return cursor.rowcount
        finally:
            await cursor.close()

    async def query(self, statement: str, params: Params = ()) -> List[Dict[str, Any]]:
        async with self._conn.execute(statement, params) as cursor:
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]


class PersistenceGateway:
    """
    Async gateway over the SQLite database.

    Handles schema creation, connection pooling and error translation; it has
    no knowledge of statuses or priorities beyond the table definition.
    """

    def __init__(self, db_path: Optional[Path] = None, pool_size: Optional[int] = None,
                 busy_timeout: float = 5.0):
        if db_path is None or pool_size is None:
            from quest_tracker.config import config_manager
            db_path = db_path if db_path is not None else config_manager.get_db_path()
            pool_size = pool_size if pool_size is not None else config_manager.get_pool_size()

        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self.initialized = False

        # Connection pool for async operations (aiosqlite)
        self._async_pool: List[aiosqlite.Connection] = []
        self._pool_size = pool_size
        self._pool_lock = asyncio.Lock()
        self._pool_semaphore: Optional[asyncio.Semaphore] = None

        logger.info(f"Database path: {self.db_path}")

    async def initialize(self):
        """Initialize database schema and connection pool"""
        if self.initialized:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(self._create_schema)

        self._pool_semaphore = asyncio.Semaphore(self._pool_size)

        # Pre-warm async connection pool
        try:
            for _ in range(self._pool_size):
                self._async_pool.append(await self._connect())
            logger.info(f"Connection pool initialized ({len(self._async_pool)} connections)")
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize async pool: {e}")
            await self.close()
            raise PersistenceError(f"Could not open database at {self.db_path}") from e

        self.initialized = True
        logger.info("Database initialized successfully")

    async def _connect(self) -> aiosqlite.Connection:
        # isolation_level=None: autocommit, transactions are opened explicitly
        conn = await aiosqlite.connect(str(self.db_path), timeout=self.busy_timeout, isolation_level=None)
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @asynccontextmanager
    async def get_async_connection(self):
        """
        Get an async connection from the pool.

        Usage:
            async with gateway.get_async_connection() as conn:
                await conn.execute(...)
        """
        if not self.initialized:
            raise PersistenceError("Database used before initialize()")

        await self._pool_semaphore.acquire()
        conn = None

        try:
            async with self._pool_lock:
                if self._async_pool:
                    conn = self._async_pool.pop()
            if conn is None:
                conn = await self._connect()

            yield conn

        finally:
            if conn is not None:
                async with self._pool_lock:
                    self._async_pool.append(conn)
            self._pool_semaphore.release()

    async def close(self):
        """Close all pooled connections"""
        async with self._pool_lock:
            for conn in self._async_pool:
                try:
                    await conn.close()
                except sqlite3.Error as e:
                    logger.debug(f"Error closing pooled connection: {e}")
            self._async_pool.clear()
        self.initialized = False
        logger.info("Database connections closed")

    def _create_schema(self):
        """Create database schema (runs in thread)"""
        conn = sqlite3.connect(str(self.db_path))
        cursor = conn.cursor()

        try:
            cursor.execute("PRAGMA journal_mode = WAL")
            for statement in SCHEMA_STATEMENTS:
                cursor.execute(statement)

            conn.commit()
            logger.info("Database schema created successfully")

        except sqlite3.Error as e:
            logger.error(f"Error creating database schema: {e}", exc_info=True)
            conn.rollback()
            raise PersistenceError(f"Could not create schema: {e}") from e
        finally:
            conn.close()

    # ===== Statement Operations =====

    async def execute(self, statement: str, params: Params = ()) -> int:
        """Execute a single statement in autocommit mode, returning the affected row count"""
        try:
            async with self.get_async_connection() as conn:
                return await Transaction(conn).execute(statement, params)
        except sqlite3.Error as e:
            logger.error(f"Error executing statement: {e}", exc_info=True)
            raise PersistenceError(f"Statement failed: {e}") from e

    async def query(self, statement: str, params: Params = ()) -> List[Dict[str, Any]]:
        """Run a read statement and return all rows as dicts"""
        try:
            async with self.get_async_connection() as conn:
                return await Transaction(conn).query(statement, params)
        except sqlite3.Error as e:
            logger.error(f"Error running query: {e}", exc_info=True)
            raise PersistenceError(f"Query failed: {e}") from e

    async def transaction(self, body: Callable[[Transaction], Awaitable[Any]]) -> Any:
        """
        Run body atomically.

        BEGIN IMMEDIATE takes the write lock up front so two transactions never
        interleave their writes. Any exception raised inside body (including
        cancellation from a timeout) rolls everything back and propagates;
        driver errors are re-raised as PersistenceError.

        Args:
            body: async callable receiving a Transaction

        Returns:
            Whatever body returns
        """
        try:
            async with self.get_async_connection() as conn:
                await conn.execute("BEGIN IMMEDIATE")
                try:
                    result = await body(Transaction(conn))
                    await conn.execute("COMMIT")
                    return result
                except BaseException:
                    await self._rollback(conn)
                    raise
        except sqlite3.Error as e:
            logger.error(f"Transaction rolled back: {e}", exc_info=True)
            raise PersistenceError(f"Transaction failed: {e}") from e

    @staticmethod
    async def _rollback(conn: aiosqlite.Connection):
        try:
            await conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            # Nothing left to roll back, e.g. BEGIN itself failed
            logger.debug(f"Rollback skipped: {e}")
