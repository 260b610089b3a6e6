# enrollhub/core/db.py - Engine, sessions and per-statement timeouts
from sqlalchemy import create_engine, text, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool, QueuePool
from typing import Any, Dict, Generator, Optional
import logging
import time
import threading
from contextlib import contextmanager

from enrollhub.core.config import settings

logger = logging.getLogger(__name__)

SLOW_QUERY_SECONDS = 0.1


def _redacted(url: str) -> str:
    return url.split("@")[-1] if "@" in url else "local"


class DatabaseManager:
    """
    Owns the engine and session factory for one database URL.

    The module-level db_manager serves the API; tests build their own
    manager on "sqlite://" so every test gets a private in-memory database.
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or settings.DATABASE_URL
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None
        self._initialized = False
        self._lock = threading.Lock()

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def initialize(self):
        """Build the engine on first use"""
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return
            try:
                self.engine = create_engine(self.database_url, **self._engine_options())
                # Rows committed by the import pipeline stay readable after commit
                self.SessionLocal = sessionmaker(
                    bind=self.engine, autoflush=False, expire_on_commit=False
                )
                self._register_listeners()
                self._initialized = True
                logger.info(f"Database ready ({_redacted(self.database_url)})")
            except Exception as e:
                logger.error(f"Could not initialize database {_redacted(self.database_url)}: {e}")
                raise

    def _engine_options(self) -> Dict[str, Any]:
        timeout = settings.DATABASE_STATEMENT_TIMEOUT_SECONDS
        options: Dict[str, Any] = {"echo": settings.DATABASE_ECHO or settings.DEV_LOG_SQL}

        if self.is_sqlite:
            # One shared connection; "timeout" is how long a writer waits on a lock
            options["poolclass"] = StaticPool
            options["connect_args"] = {"check_same_thread": False, "timeout": timeout}
            return options

        options.update({
            "poolclass": QueuePool,
            "pool_size": settings.DATABASE_POOL_SIZE,
            "max_overflow": settings.DATABASE_MAX_OVERFLOW,
            "pool_timeout": settings.DATABASE_POOL_TIMEOUT,
            "pool_recycle": settings.DATABASE_POOL_RECYCLE,
            "pool_pre_ping": True,
            "connect_args": {
                "connect_timeout": 10,
                "application_name": f"enrollhub_{settings.ENV}",
                "options": f"-c timezone=UTC -c statement_timeout={timeout * 1000}",
            },
        })
        return options

    def _register_listeners(self):
        if self.is_sqlite:
            @event.listens_for(self.engine, "connect")
            def enable_foreign_keys(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.execute("PRAGMA synchronous=NORMAL")
                cursor.close()

        if not settings.is_development:
            return

        @event.listens_for(self.engine, "before_cursor_execute")
        def start_timer(conn, cursor, statement, parameters, context, executemany):
            context._enrollhub_started = time.time()

        @event.listens_for(self.engine, "after_cursor_execute")
        def report_slow_query(conn, cursor, statement, parameters, context, executemany):
            elapsed = time.time() - getattr(context, "_enrollhub_started", time.time())
            if elapsed > SLOW_QUERY_SECONDS:
                logger.warning(f"Slow query ({elapsed:.3f}s): {statement[:100]}...")

    def create_all(self):
        """Create any missing tables"""
        from enrollhub.models import Base

        self.initialize()
        Base.metadata.create_all(bind=self.engine)

    def get_session(self) -> Generator[Session, None, None]:
        """
        Yield a session and close it afterwards.

        Commits are left to the caller; the import pipeline commits per row.
        """
        self.initialize()
        session = self.SessionLocal()
        try:
            yield session
        except Exception as e:
            session.rollback()
            logger.error(f"Session rolled back: {e}")
            raise
        finally:
            session.close()

    @contextmanager
    def transaction(self):
        """Session that commits when the block exits cleanly and rolls back otherwise"""
        self.initialize()
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Transaction rolled back: {e}")
            raise
        finally:
            session.close()

    def health_check(self) -> dict:
        try:
            self.initialize()
            started = time.time()
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return {
                "status": "healthy",
                "response_time_ms": round((time.time() - started) * 1000, 2),
                "database_url": _redacted(self.database_url),
            }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "unhealthy", "error": str(e)}

    def close(self):
        if self.engine:
            self.engine.dispose()
            logger.info("Database connections closed")


db_manager = DatabaseManager()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a session from the application database"""
    yield from db_manager.get_session()


def health_check() -> dict:
    return db_manager.health_check()


__all__ = [
    "DatabaseManager",
    "get_db",
    "health_check",
    "db_manager",
]
