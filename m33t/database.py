from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

# Base will be used to create our database models (the tables)
Base = declarative_base()


class Database:
    """
    Owns the engine (and with it the connection pool) for the lifetime of the app.
    Built once at startup, disposed at shutdown.
    """

    def __init__(self, url: str):
        self.url = url
        if url.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False}}
            if url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise every session sees its own empty database
                kwargs["poolclass"] = StaticPool
            self.engine = create_engine(url, **kwargs)
        else:
            self.engine = create_engine(url, pool_size=20, max_overflow=30, pool_timeout=30)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_all(self) -> None:
        # Import models so they register on Base.metadata
        from m33t import models  # noqa: F401
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database schema initialized")

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    def dispose(self) -> None:
        self.engine.dispose()
