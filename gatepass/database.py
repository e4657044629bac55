# =======================================================================================
# gatepass/database.py - Database Management
# =======================================================================================
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool
from contextlib import contextmanager
from typing import Any, Iterator, Optional
from sqlalchemy.engine import Connection
from .config import config
from .models.tables import metadata

class DatabaseManager:
    """Manages database connections and transactions."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or config.DB_URL
        self.engine: Engine = self._create_engine(self.url)

    @staticmethod
    def _create_engine(url: str) -> Engine:
        if url.startswith("sqlite"):
            # worker threads share the engine; wait on SQLite's writer lock instead of failing
            return create_engine(
                url,
                connect_args={"check_same_thread": False, "timeout": 30},
                future=True,
            )
        return create_engine(
            url,
            poolclass=QueuePool,
            pool_size=config.DB_POOL_SIZE,
            max_overflow=config.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
            isolation_level="READ COMMITTED",
            future=True,
        )

    @contextmanager
    def get_connection(self) -> Iterator[Connection]:
        """Get a transactional connection; commits on exit, rolls back on error."""
        with self.engine.begin() as conn:
            yield conn

    def fetch_one(self, query: Any, params: dict = None):
        """Fetch a single result."""
        if isinstance(query, str):
            query = text(query)
        with self.get_connection() as conn:
            result = conn.execute(query, params or {})
            return result.mappings().first()

    def fetch_all(self, query: Any, params: dict = None):
        """Fetch all results."""
        if isinstance(query, str):
            query = text(query)
        with self.get_connection() as conn:
            result = conn.execute(query, params or {})
            return result.mappings().all()

    def create_schema(self) -> None:
        metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

# Global database instance
db_manager = DatabaseManager()
