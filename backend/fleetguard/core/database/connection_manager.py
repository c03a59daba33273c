"""
Database connection management with pooling and session lifecycle
"""

import time
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool, QueuePool, StaticPool

from fleetguard.core.error_handling.exceptions import DatabaseException

logger = logging.getLogger(__name__)


class PoolType(Enum):
    """Database pool types"""
    QUEUE_POOL = "queue_pool"
    NULL_POOL = "null_pool"
    STATIC_POOL = "static_pool"


@dataclass
class ConnectionPoolConfig:
    """Database connection pool configuration"""
    pool_type: PoolType = PoolType.QUEUE_POOL
    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout: int = 30
    pool_recycle: int = 3600
    pool_pre_ping: bool = True
    connect_timeout: int = 10


@dataclass
class ConnectionMetrics:
    """Database connection metrics"""
    sessions_opened: int = 0
    session_errors: int = 0
    connections_created: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessions_opened": self.sessions_opened,
            "session_errors": self.session_errors,
            "connections_created": self.connections_created,
        }


class DatabaseConnectionManager:
    """
    Owns the SQLAlchemy engine and session factory.

    SQLite URLs are given a single static connection so in-memory databases
    survive across sessions.
    """

    def __init__(self, database_url: str, config: Optional[ConnectionPoolConfig] = None):
        self.database_url = database_url
        self.config = config or ConnectionPoolConfig()
        self.metrics = ConnectionMetrics()
        self.metrics_lock = threading.Lock()

        self.engine: Optional[Engine] = None
        self.session_factory: Optional[sessionmaker] = None

        self._initialize_engine()
        self._setup_event_listeners()

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def _initialize_engine(self):
        """Initialize the SQLAlchemy engine with connection pooling"""
        try:
            engine_args: Dict[str, Any] = {"url": self.database_url, "echo": False}

            if self.is_sqlite:
                engine_args["poolclass"] = StaticPool
                engine_args["connect_args"] = {"check_same_thread": False}
            else:
                pool_classes = {
                    PoolType.QUEUE_POOL: QueuePool,
                    PoolType.NULL_POOL: NullPool,
                    PoolType.STATIC_POOL: StaticPool,
                }
                engine_args["poolclass"] = pool_classes.get(self.config.pool_type, QueuePool)
                if self.config.pool_type == PoolType.QUEUE_POOL:
                    engine_args.update({
                        "pool_size": self.config.pool_size,
                        "max_overflow": self.config.max_overflow,
                        "pool_timeout": self.config.pool_timeout,
                        "pool_recycle": self.config.pool_recycle,
                        "pool_pre_ping": self.config.pool_pre_ping,
                    })
                engine_args["connect_args"] = {"connect_timeout": self.config.connect_timeout}

            self.engine = create_engine(**engine_args)
            self.session_factory = sessionmaker(
                bind=self.engine,
                autocommit=False,
                autoflush=False,
                expire_on_commit=False
            )
            logger.info(f"[DB] Connection manager initialized ({self.engine.dialect.name})")

        except Exception as e:
            logger.error("[DB] Failed to initialize database engine", exc_info=True)
            raise DatabaseException(f"Failed to initialize database: {str(e)}", cause=e)

    def _setup_event_listeners(self):
        @event.listens_for(self.engine, "connect")
        def on_connect(dbapi_connection, connection_record):
            with self.metrics_lock:
                self.metrics.connections_created += 1

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        """Get database session with automatic commit, rollback and cleanup"""
        if not self.session_factory:
            raise DatabaseException("Database not initialized")

        session = None
        start_time = time.time()

        try:
            session = self.session_factory()
            with self.metrics_lock:
                self.metrics.sessions_opened += 1
            yield session
            session.commit()

        except DatabaseException:
            if session:
                session.rollback()
            with self.metrics_lock:
                self.metrics.session_errors += 1
            raise

        except Exception as e:
            if session:
                session.rollback()
            with self.metrics_lock:
                self.metrics.session_errors += 1
            logger.error(
                f"[DB] Session error after {(time.time() - start_time) * 1000:.1f}ms",
                exc_info=True
            )
            raise DatabaseException(f"Database session error: {str(e)}", cause=e)

        finally:
            if session:
                session.close()

    def health_check(self) -> Dict[str, Any]:
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return {"status": "healthy", **self.metrics.to_dict()}
        except Exception as e:
            return {"status": "unhealthy", "error": str(e)}

    def close(self):
        if self.engine:
            self.engine.dispose()
            logger.info("[DB] Connection manager closed")
