import uuid
from typing import Optional

import structlog
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .config import settings
from .schemas.sync import SyncResult


logger = structlog.get_logger(__name__)

Base = declarative_base()


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # In-memory databases must share one connection across worker threads
        if url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(
                url,
                future=True,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(url, future=True, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        future=True,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,  # Recycle connections after 1 hour
    )


class RemoteBackend:
    """
    Connection holder for the remote mirror.

    An unset URL is the normal local-only mode: ``is_configured()`` returns
    False and nothing here opens a connection.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        engine: Optional[Engine] = None,
        chunk_size: Optional[int] = None,
        client_id: Optional[str] = None,
    ):
        self.url = url if url is not None else settings.remote_database_url
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = None
        self.chunk_size = chunk_size or settings.sync_batch_chunk
        # Tags change events written by this process so its own feed can skip them
        self.client_id = client_id or str(uuid.uuid4())

    def is_configured(self) -> bool:
        return bool(self._engine is not None or self.url)

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            if not self.url:
                raise RuntimeError("REMOTE_DATABASE_URL is not set")
            self._engine = build_engine(self.url)
        return self._engine

    def session(self) -> Session:
        if self._session_factory is None:
            # IMPORTANT: sessions are short-lived, one per gateway call
            self._session_factory = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, future=True)
        return self._session_factory()

    def create_tables(self) -> None:
        # Register table classes on Base.metadata
        from .models import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def test_connection(self) -> SyncResult:
        if not self.is_configured():
            return SyncResult(success=False, message="Remote backend not configured")
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return SyncResult(success=True, message="Connected to remote backend")
        except Exception as e:
            logger.warning("remote_connection_failed", error=str(e))
            return SyncResult(success=False, message=str(e) or "Failed to connect to remote backend")

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
