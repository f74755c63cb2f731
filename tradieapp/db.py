import os
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker


Base = declarative_base()


class Database:
    """Owns the engine and session factory for one application instance.

    Built once in ``create_app`` and disposed on shutdown; route handlers get
    sessions through ``get_db`` rather than a module-level engine.
    """

    def __init__(self, url: str, **engine_kwargs):
        self.url = url
        if url.startswith("sqlite"):
            # Ensure local SQLite directory exists
            if url.startswith("sqlite:///./"):
                os.makedirs(os.path.dirname(url[len("sqlite:///"):]) or ".", exist_ok=True)
            engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
        else:
            engine_kwargs.setdefault("pool_pre_ping", True)
            engine_kwargs.setdefault("pool_size", 5)
            engine_kwargs.setdefault("max_overflow", 10)
            engine_kwargs.setdefault("pool_recycle", 3600)  # Recycle connections after 1 hour
        self.engine = create_engine(url, future=True, **engine_kwargs)
        # IMPORTANT: do not use scoped_session with async frameworks; create a fresh Session per request
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, future=True)

    def session(self) -> Session:
        return self.session_factory()

    def create_all(self) -> None:
        # Models must be imported so their tables are registered on Base.metadata
        from .models import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.db.session()
    try:
        yield db
    finally:
        db.close()
