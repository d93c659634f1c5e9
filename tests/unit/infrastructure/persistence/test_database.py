"""Unit tests for DatabaseManager."""
import pytest
from sqlalchemy import inspect

from contentbase.core.config import Settings
from contentbase.infrastructure.persistence.database import DatabaseManager


@pytest.fixture
def manager():
    return DatabaseManager(
        Settings(
            _env_file=None,
            environment="testing",
            database_url="sqlite+aiosqlite:///:memory:",
        )
    )


@pytest.mark.asyncio
async def test_check_connection(manager):
    """Test that a working database reports a healthy connection."""
    assert await manager.check_connection() is True
    await manager.disconnect()


@pytest.mark.asyncio
async def test_create_tables(manager):
    """Test creating the registry tables."""
    await manager.create_tables()

    async with manager.engine.connect() as conn:
        tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    assert "collections" in tables

    await manager.disconnect()


@pytest.mark.asyncio
async def test_foreign_keys_pragma(manager):
    """Test that SQLite connections enforce foreign keys."""
    async with manager.engine.connect() as conn:
        result = await conn.exec_driver_sql("PRAGMA foreign_keys")
        assert result.scalar_one() == 1

    await manager.disconnect()


@pytest.mark.asyncio
async def test_disconnect_resets_engine(manager):
    """Test that a new engine is created after disconnecting."""
    first = manager.engine
    await manager.disconnect()

    assert manager.engine is not first
    await manager.disconnect()


@pytest.mark.asyncio
async def test_session_rolls_back_on_error(manager):
    """Test that the session scope re-raises errors."""
    with pytest.raises(ValueError):
        async with manager.session():
            raise ValueError("boom")

    await manager.disconnect()
