"""Engine and session management.

One async engine per process, shared by the registry (ORM) and the
collection tables (Core). SQLite runs on aiosqlite; any other URL, such as
``postgresql+asyncpg://``, gets a sized connection pool.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from contentbase.core.config import Settings, get_settings
from contentbase.core.logging import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Declarative base of the registry models.

    Collection tables are not mapped; they are built at runtime with
    SQLAlchemy Core from the stored field definitions.
    """


def register_sqlite_pragmas(engine: AsyncEngine, settings: Settings) -> None:
    """Apply the configured SQLite pragmas to every new DBAPI connection.

    Relation tables rely on ``foreign_keys`` for their cascading deletes.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection: Any, connection_record: Any) -> None:
        foreign_keys = "ON" if settings.db_sqlite_foreign_keys else "OFF"
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute(f"PRAGMA foreign_keys={foreign_keys}")
            cursor.execute(f"PRAGMA busy_timeout={int(settings.db_sqlite_busy_timeout)}")
        finally:
            cursor.close()


class DatabaseManager:
    """Owns the engine and the session factory, both created on first use."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    def _engine_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"echo": self.settings.db_echo}
        if self.settings.is_sqlite:
            options["connect_args"] = {"check_same_thread": False}
        else:
            options.update(
                pool_size=self.settings.db_pool_size,
                max_overflow=self.settings.db_max_overflow,
                pool_timeout=self.settings.db_pool_timeout,
                pool_recycle=self.settings.db_pool_recycle,
            )
        return options

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            engine = create_async_engine(self.settings.database_url, **self._engine_options())
            if self.settings.is_sqlite:
                register_sqlite_pragmas(engine, self.settings)
            self._engine = engine
            logger.info(
                "Engine ready",
                database_url=engine.url.render_as_string(hide_password=True),
                backend=engine.url.get_backend_name(),
            )
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._session_factory

    async def create_tables(self) -> None:
        """Create the ``collections`` registry table when missing."""
        # Registers CollectionModel on Base.metadata
        from contentbase.infrastructure.persistence import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Registry ready", tables=sorted(Base.metadata.tables))

    async def disconnect(self) -> None:
        """Dispose of the engine; the next access builds a fresh one."""
        engine, self._engine = self._engine, None
        self._session_factory = None
        if engine is not None:
            await engine.dispose()
            logger.info("Engine disposed")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Open a session that is rolled back if the block raises.

        Committing is left to the caller:

            async with db.session() as session:
                service = CollectionService(session, db.engine)
                await service.create_collection(...)
        """
        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def check_connection(self) -> bool:
        """Return True when a trivial query succeeds."""
        try:
            async with self.engine.connect() as conn:
                await conn.exec_driver_sql("SELECT 1")
        except (SQLAlchemyError, OSError) as e:
            logger.error("Database unreachable", error=str(e))
            return False
        return True


_db_manager: DatabaseManager | None = None


def get_db_manager() -> DatabaseManager:
    """Return the process-wide DatabaseManager."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


async def init_database() -> None:
    """Prepare storage for a fresh deployment.

    Creates the directory of a file-based SQLite database, verifies the
    connection and creates the registry table.

    Raises:
        RuntimeError: If the database cannot be reached.
    """
    db = get_db_manager()

    path = db.settings.sqlite_path
    if path is not None and not path.parent.exists():
        path.parent.mkdir(parents=True)
        logger.info("Created data directory", path=str(path.parent))

    if not await db.check_connection():
        url = db.engine.url.render_as_string(hide_password=True)
        raise RuntimeError(f"Cannot connect to {url}")

    await db.create_tables()


async def close_database() -> None:
    await get_db_manager().disconnect()
