"""Database engine, session factory and FastAPI dependency."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from livechat.config import get_settings

Base = declarative_base()


class DatabaseManager:
    """Lazily builds the engine so importing models never opens a connection."""

    def __init__(self) -> None:
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = self._create_engine()
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine, autoflush=False, expire_on_commit=False
            )
        return self._session_factory

    def _create_engine(self) -> Engine:
        settings = get_settings()
        url = settings.database_url_obj
        if url.get_backend_name() == "sqlite":
            # In-memory SQLite must share one connection across sessions
            return create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(
            url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
        )

    def bind(self, engine: Engine) -> None:
        """Point the manager at an existing engine (tests, scripts)."""
        self._engine = engine
        self._session_factory = None

    @contextmanager
    def db_session(self) -> Iterator[Session]:
        session = self.session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


db_manager = DatabaseManager()


def get_db() -> Iterator[Session]:
    """FastAPI dependency yielding a request-scoped session."""
    with db_manager.db_session() as session:
        yield session


def db_session():
    return db_manager.db_session()
