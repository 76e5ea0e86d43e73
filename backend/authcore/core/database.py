"""Database configuration and session management"""

from contextlib import contextmanager
from typing import Any, Dict, Generator, Iterator, Optional

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from authcore.config import settings
import logging

logger = logging.getLogger(__name__)

# Create base class for models
Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """
    Process-wide connection pool with an explicit lifecycle.

    ``init()`` runs once at startup, ``dispose()`` at shutdown. Request code
    never touches the engine directly: it borrows a session through
    ``session()`` or the ``get_db`` dependency, which always hands the
    connection back to the pool.
    """

    def __init__(self) -> None:
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database is not initialized. Call database.init() at startup.")
        return self._engine

    def init(self, url: Optional[str] = None, **engine_kwargs: Any) -> Engine:
        """Create the engine and its pool. Calling twice is a no-op."""
        if self._engine is not None:
            return self._engine

        url = url or settings.get_database_url()
        options: Dict[str, Any] = {"echo": settings.DEBUG}
        if url.startswith("sqlite"):
            options["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url.rstrip("/") == "sqlite:":
                options["poolclass"] = StaticPool
        else:
            options["connect_args"] = {"options": "-c timezone=utc"}
            options.update(
                pool_size=settings.DATABASE_POOL_SIZE,
                max_overflow=settings.DATABASE_MAX_OVERFLOW,
                pool_timeout=settings.DATABASE_POOL_TIMEOUT,
                pool_recycle=3600,
                pool_pre_ping=True,
            )
        options.update(engine_kwargs)

        engine = create_engine(url, **options)
        if engine.dialect.name == "sqlite":
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)

        self._engine = engine
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        logger.info("Database pool initialized (dialect=%s)", engine.dialect.name)
        return engine

    def dispose(self) -> None:
        """Drain the pool. Safe to call when not initialized."""
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("Database pool disposed")

    def new_session(self) -> Session:
        if self._session_factory is None:
            raise RuntimeError("Database is not initialized. Call database.init() at startup.")
        return self._session_factory()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Borrow one connection for the duration of the block."""
        db = self.new_session()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def pool_status(self) -> Dict[str, Any]:
        if self._engine is None:
            return {"initialized": False}
        return {"initialized": True, "status": self._engine.pool.status()}


database = Database()

# Import models after Base is defined so metadata is populated.
from authcore import models  # noqa: E402,F401


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session

    Yields:
        Session: Database session
    """
    db = database.new_session()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """
    Initialize database according to configured strategy.

    DB_INIT_MODE:
      - migrate: require alembic_version table (migration-first discipline)
      - create_all: legacy behavior for local/dev bootstrap
      - off: skip initialization check
    """
    engine = database.engine
    mode = settings.DB_INIT_MODE.lower().strip()
    if mode == "off":
        logger.info("DB initialization check skipped (DB_INIT_MODE=off)")
        return

    if mode == "create_all":
        Base.metadata.create_all(bind=engine)
        logger.warning("Using create_all database initialization (recommended only for local development).")
        return

    if mode == "migrate":
        with engine.connect() as conn:
            if engine.dialect.name == "postgresql":
                version_table_exists = conn.execute(
                    text("SELECT to_regclass('public.alembic_version')")
                ).scalar()
                exists = bool(version_table_exists)
            elif engine.dialect.name == "sqlite":
                version_table_exists = conn.execute(
                    text(
                        "SELECT name FROM sqlite_master WHERE type='table' AND name='alembic_version'"
                    )
                ).fetchone()
                exists = bool(version_table_exists)
            else:
                exists = "alembic_version" in inspect(conn).get_table_names()
            if settings.DB_REQUIRE_HEAD and not exists:
                raise RuntimeError(
                    "Migration table missing. Run Alembic migrations before starting the API."
                )
        logger.info("Migration metadata detected.")
        return

    raise RuntimeError(f"Unknown DB_INIT_MODE: {settings.DB_INIT_MODE}")
