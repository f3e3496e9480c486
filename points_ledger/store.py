"""
Database store for the points ledger

SQLAlchemy 2.0 engine and session handling. Each ``LedgerStore`` owns its own
engine, so tests and processes can run isolated instances side by side.
"""

from contextlib import contextmanager
from typing import Iterator, Optional

from loguru import logger
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import DATABASE_ECHO, DATABASE_URL
from .errors import StorageError
from .schema import Base


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for ``database_url``.

    SQLite connections are shared across request threads; the in-memory
    variant is pinned to a single connection so every session sees the same
    database.
    """
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            return create_engine(
                database_url,
                echo=echo,
                connect_args=connect_args,
                poolclass=StaticPool,
            )
        return create_engine(database_url, echo=echo, connect_args=connect_args)

    return create_engine(
        database_url,
        echo=echo,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


class LedgerStore:
    def __init__(self, database_url: Optional[str] = None, engine: Optional[Engine] = None, echo: bool = False):
        if engine is None:
            if database_url is None:
                database_url = DATABASE_URL
                echo = echo or DATABASE_ECHO
            engine = build_engine(database_url, echo=echo)
        self.engine = engine
        self._session_factory = sessionmaker(
            bind=engine,
            expire_on_commit=False,
            autoflush=False,
        )

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Run a unit of work in one transaction.

        Commits when the block exits normally, rolls back on any exception.
        SQLAlchemy failures surface as StorageError; domain errors pass through.
        """
        session = self._session_factory()
        try:
            with session.begin():
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Ledger store transaction failed: {e}")
            raise StorageError(f"Ledger store failure: {e}") from e
        finally:
            session.close()

    def create_schema(self) -> None:
        """Create all tables that do not exist yet. Production uses migrations."""
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not create schema: {e}") from e
        logger.info("Ledger tables ready")

    def drop_schema(self) -> None:
        Base.metadata.drop_all(self.engine)
        logger.warning("Ledger tables dropped")

    def check_connection(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("Ledger store engine disposed")
