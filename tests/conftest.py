"""
Shared fixtures for the GTFS editor persistence tests.

Every test gets its own SQLite database file. Set GTFS_EDITOR_TEST_PG_URL
(e.g. postgresql+asyncpg://localhost/gtfs_test) to run the same tests against
PostgreSQL schemas as well.
"""

import os

import pytest
import pytest_asyncio
from sqlalchemy import func, inspect, select
from sqlalchemy.schema import DropSchema

from gtfs_editor.core.config import Settings
from gtfs_editor.db.models_db import FeedModel, NamespaceTables
from gtfs_editor.db.session import ConnectionSource
from gtfs_editor.services.snapshot_manager import SnapshotManager

PG_URL = os.environ.get("GTFS_EDITOR_TEST_PG_URL")


async def resetDatabase(source: ConnectionSource) -> None:
    """Drop every namespace schema and the feeds table of a shared PostgreSQL database."""
    if not source.usesSchemas:
        return
    async with source.engine.begin() as conn:
        if not await conn.run_sync(lambda syncConn: inspect(syncConn).has_table(FeedModel.__tablename__)):
            return
        namespaces = (await conn.execute(select(FeedModel.namespace))).scalars().all()
        for namespace in namespaces:
            await conn.execute(DropSchema(namespace, cascade=True, if_exists=True))
        await conn.run_sync(lambda syncConn: FeedModel.__table__.drop(syncConn))


@pytest.fixture(params=["sqlite", "postgresql"])
def databaseUrl(request, tmp_path) -> str:
    """Database URL for the backend under test."""
    if request.param == "sqlite":
        return f"sqlite+aiosqlite:///{tmp_path / 'gtfs.db'}"
    if not PG_URL:
        pytest.skip("PostgreSQL tests disabled. Set GTFS_EDITOR_TEST_PG_URL to enable.")
    return PG_URL


@pytest.fixture
def settings(databaseUrl) -> Settings:
    return Settings(databaseUrl=databaseUrl)


@pytest_asyncio.fixture
async def connectionSource(settings):
    source = ConnectionSource(settings)
    await resetDatabase(source)
    yield source
    await resetDatabase(source)
    await source.dispose()


@pytest.fixture
def snapshotManager(connectionSource) -> SnapshotManager:
    return SnapshotManager(connectionSource)


@pytest_asyncio.fixture
async def namespace(snapshotManager) -> str:
    """A fresh, empty namespace."""
    result = await snapshotManager.createNamespace(None)
    return result.namespace


@pytest.fixture
def countRows(connectionSource):
    """Count committed rows of a namespaced table matching column criteria."""

    async def count(namespace: str, tableName: str, **criteria) -> int:
        table = NamespaceTables(namespace, connectionSource.usesSchemas).get(tableName)
        stmt = select(func.count()).select_from(table)
        for column, value in criteria.items():
            stmt = stmt.where(table.c[column] == value)
        async with connectionSource.session() as db:
            return await db.scalar(stmt)

    return count
