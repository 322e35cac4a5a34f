"""
Case store connection handling

Settings come from the environment (DATABASE_URL, or DB_HOST / DB_PORT /
DB_NAME / DB_USER / DB_PASSWORD for PostgreSQL). Engine creation is retried
with tenacity because the API usually starts alongside its database.
"""

import os
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Generator, Optional

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from database.models import Base

logger = logging.getLogger(__name__)

MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


@dataclass
class DatabaseSettings:
    """Where the case store lives and how connections are pooled"""
    host: str = "localhost"
    port: int = 5432
    database: str = "conflicts"
    user: str = "conflicts"
    password: str = "conflicts"
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    echo: bool = False
    url: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'DatabaseSettings':
        env = os.getenv
        return cls(
            host=env("DB_HOST", "localhost"),
            port=int(env("DB_PORT", "5432")),
            database=env("DB_NAME", "conflicts"),
            user=env("DB_USER", "conflicts"),
            password=env("DB_PASSWORD", "conflicts"),
            pool_size=int(env("DB_POOL_SIZE", "5")),
            max_overflow=int(env("DB_MAX_OVERFLOW", "10")),
            pool_timeout=int(env("DB_POOL_TIMEOUT", "30")),
            pool_recycle=int(env("DB_POOL_RECYCLE", "1800")),
            echo=env("DB_ECHO", "false").lower() == "true",
            url=env("DATABASE_URL"),
        )

    def get_url(self) -> str:
        """Explicit URL, else a PostgreSQL URL built from the parts"""
        if self.url:
            return self.url
        return f"postgresql+psycopg2://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"

    @property
    def is_sqlite(self) -> bool:
        return self.get_url().startswith("sqlite")


@lru_cache()
def get_settings() -> DatabaseSettings:
    return DatabaseSettings.from_env()


def get_pool_settings(settings: DatabaseSettings) -> Dict[str, Any]:
    """Keyword arguments for create_engine()

    SQLite takes no pool sizing; an in-memory database must share a single
    connection or every thread sees an empty schema.
    """
    if settings.is_sqlite:
        options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if settings.get_url() in MEMORY_URLS:
            options["poolclass"] = StaticPool
        return options
    return {
        "pool_size": settings.pool_size,
        "max_overflow": settings.max_overflow,
        "pool_timeout": settings.pool_timeout,
        "pool_recycle": settings.pool_recycle,
        "pool_pre_ping": True,
    }


connect_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(OperationalError),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


class DatabaseSessionProvider:
    """
    Owns the engine and hands out sessions.

    get_session() is a FastAPI dependency; session_scope() is for scripts,
    the CLI and tests and commits on success.
    """

    def __init__(self, settings: Optional[DatabaseSettings] = None, engine: Optional[Engine] = None):
        self._settings = settings or get_settings()
        self._engine = engine
        self._sessions: Optional[sessionmaker] = None

    @property
    def settings(self) -> DatabaseSettings:
        return self._settings

    @property
    def is_initialized(self) -> bool:
        return self._sessions is not None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._engine

    def init(self, echo: Optional[bool] = None) -> None:
        if self.is_initialized:
            return
        if echo is not None:
            self._settings.echo = echo
        if self._engine is None:
            self._engine = self._connect()
        self._sessions = sessionmaker(bind=self._engine, autoflush=False, expire_on_commit=False)
        logger.info("Case store ready (%s)", "sqlite" if self._settings.is_sqlite else "postgresql")

    @connect_retry
    def _connect(self) -> Engine:
        engine = create_engine(
            self._settings.get_url(),
            echo=self._settings.echo,
            **get_pool_settings(self._settings)
        )
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return engine

    def get_session(self) -> Generator[Session, None, None]:
        self.init()
        session = self._sessions()
        try:
            yield session
        finally:
            session.close()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        self.init()
        session = self._sessions()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create the case store schema (tests and local runs only)"""
        self.init()
        Base.metadata.create_all(self._engine)
        logger.info("Case store tables created")

    def health_check(self) -> bool:
        try:
            with self.session_scope() as session:
                session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error(f"Case store health check failed: {e}")
            return False
        return True

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Case store connections closed")
        self._sessions = None


_db_provider: Optional[DatabaseSessionProvider] = None


def get_db_provider() -> DatabaseSessionProvider:
    """Process-wide provider built from the environment"""
    global _db_provider
    if _db_provider is None:
        _db_provider = DatabaseSessionProvider()
    return _db_provider


def init_db(echo: bool = False) -> DatabaseSessionProvider:
    """Connect the process-wide provider (API startup)"""
    provider = get_db_provider()
    provider.init(echo=echo)
    return provider


def close_db() -> None:
    """Dispose the process-wide provider (API shutdown)"""
    global _db_provider
    if _db_provider is not None:
        _db_provider.close()
        _db_provider = None


def create_test_provider(engine: Optional[Engine] = None,
                         settings: Optional[DatabaseSettings] = None) -> DatabaseSessionProvider:
    """Provider for tests; defaults to a private in-memory SQLite database"""
    return DatabaseSessionProvider(
        settings=settings or DatabaseSettings(url="sqlite://"),
        engine=engine
    )
