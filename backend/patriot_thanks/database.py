from __future__ import annotations

import logging
import threading
from collections.abc import Generator

from fastapi import Request
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class Database:
    """Process-wide store handle.

    The engine is built on first use. Concurrent first callers wait on the
    same setup instead of each opening a pool.
    """

    def __init__(self, url: str, *, engine: Engine | None = None, **engine_options) -> None:
        self.url = url
        self._engine = engine
        self._engine_options = engine_options
        self._session_factory: sessionmaker[Session] | None = None
        self._lock = threading.Lock()
        if engine is not None:
            self._session_factory = self._build_session_factory(engine)

    @staticmethod
    def _build_session_factory(engine: Engine) -> sessionmaker[Session]:
        return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)

    @property
    def engine(self) -> Engine:
        if self._engine is not None:
            return self._engine
        with self._lock:
            if self._engine is None:
                options = {"pool_pre_ping": True, **self._engine_options}
                logger.info("Opening database engine for %s", self.url.split("@")[-1])
                engine = create_engine(self.url, **options)
                self._session_factory = self._build_session_factory(engine)
                self._engine = engine
        return self._engine

    def session(self) -> Session:
        engine = self.engine
        if self._session_factory is None:
            self._session_factory = self._build_session_factory(engine)
        return self._session_factory()

    def create_all(self) -> None:
        from . import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        with self._lock:
            if self._engine is not None:
                self._engine.dispose()
            self._engine = None
            self._session_factory = None


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_db(request: Request) -> Generator[Session, None, None]:
    db = get_database(request).session()
    try:
        yield db
    finally:
        db.close()
