"""Fixtures for integration tests against an in-memory database."""

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from contentbase.core.config import Settings
from contentbase.domain.services.collection_service import CollectionService


@pytest.fixture
def service(db_session: AsyncSession, engine: AsyncEngine, settings: Settings) -> CollectionService:
    """Collection service wired to the in-memory test database."""
    return CollectionService(db_session, engine, settings)
