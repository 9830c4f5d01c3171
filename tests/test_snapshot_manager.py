"""
Integration tests for namespace creation and forking.

Tests cover:
- Empty namespaces and their feeds records
- Forking an existing namespace
- Isolation between namespaces
- Atomic rollback when creation fails
"""

import json

import pytest
from sqlalchemy import func, inspect, select
from sqlalchemy.exc import OperationalError

from gtfs_editor.core.exceptions import InvalidNamespaceError, TransientDatabaseError
from gtfs_editor.crud.crud_feed import crudFeed
from gtfs_editor.crud.table_writer import TableWriter
from gtfs_editor.db.models_db import FeedModel, NamespaceTables
from gtfs_editor.models.gtfs_tables import tableRegistry


async def countFeeds(connectionSource) -> int:
    async with connectionSource.session() as db:
        return await db.scalar(select(func.count()).select_from(FeedModel))


async def tableExists(connectionSource, namespace: str, tableName: str) -> bool:
    table = NamespaceTables(namespace, connectionSource.usesSchemas).get(tableName)
    async with connectionSource.engine.connect() as conn:
        return await conn.run_sync(lambda syncConn: inspect(syncConn).has_table(table.name, schema=table.schema))


class TestEmptyNamespace:
    """Tests for SnapshotManager.createNamespace without a source."""

    @pytest.mark.asyncio
    async def test_creates_feeds_record(self, snapshotManager, connectionSource):
        """The new namespace is registered with no snapshot source."""
        result = await snapshotManager.createNamespace(None)

        assert result.snapshotOf is None
        assert result.tableCounts == {}
        async with connectionSource.session() as db:
            feed = await crudFeed.getFeedByNamespace(db, result.namespace)
        assert feed is not None
        assert feed.snapshot_of is None
        assert feed.loaded_date is not None

    @pytest.mark.asyncio
    async def test_every_declared_table_is_created_empty(self, snapshotManager, connectionSource, countRows):
        """All registry tables exist in the namespace with zero rows."""
        result = await snapshotManager.createNamespace(None)
        for table in tableRegistry:
            assert await tableExists(connectionSource, result.namespace, table.name)
            assert await countRows(result.namespace, table.name) == 0

    @pytest.mark.asyncio
    async def test_namespace_ids_are_unique(self, snapshotManager, connectionSource):
        """Each call yields a distinct, well-formed identifier."""
        first = await snapshotManager.createNamespace(None)
        second = await snapshotManager.createNamespace(None)

        assert first.namespace != second.namespace
        assert first.namespace.startswith(connectionSource.settings.namespacePrefix + "_")
        assert await countFeeds(connectionSource) == 2

    @pytest.mark.asyncio
    async def test_colliding_id_is_regenerated(self, snapshotManager, namespace, monkeypatch):
        """An id already present in feeds is never reused."""
        candidates = iter([namespace, "ns_fresh_id"])
        monkeypatch.setattr(snapshotManager, "generateNamespaceId", lambda: next(candidates))

        result = await snapshotManager.createNamespace(None)

        assert result.namespace == "ns_fresh_id"


class TestForkNamespace:
    """Tests for SnapshotManager.createNamespace with a source namespace."""

    async def _seed(self, connectionSource, namespace):
        async with TableWriter(tableRegistry.lookup("fare_attributes"), connectionSource, namespace) as writer:
            await writer.create({
                "fare_id": "2A",
                "price": 2.5,
                "fare_rules": [{"contains_id": "zone1"}, {"contains_id": "zone2"}],
            })
        async with TableWriter("feed_info", connectionSource, namespace) as writer:
            await writer.create({"feed_publisher_name": "test-publisher", "feed_lang": "en"})

    @pytest.mark.asyncio
    async def test_fork_copies_every_row(self, snapshotManager, connectionSource, namespace, countRows):
        """Every row of the source is present in the fork."""
        await self._seed(connectionSource, namespace)

        result = await snapshotManager.createNamespace(namespace)

        assert result.snapshotOf == namespace
        assert result.tableCounts["fare_attributes"] == 1
        assert result.tableCounts["fare_rules"] == 2
        assert result.tableCounts["feed_info"] == 1
        assert result.tableCounts["routes"] == 0
        assert set(result.tableCounts) == {t.name for t in tableRegistry}
        assert await countRows(result.namespace, "fare_rules", fare_id="2A") == 2

        info = await snapshotManager.getNamespace(result.namespace)
        assert info.snapshotOf == namespace

    @pytest.mark.asyncio
    async def test_fork_keeps_ids_and_continues_numbering(self, snapshotManager, connectionSource, namespace):
        """Copied rows keep their ids and new rows get fresh ones."""
        await self._seed(connectionSource, namespace)
        result = await snapshotManager.createNamespace(namespace)

        async with TableWriter("fare_attributes", connectionSource, namespace) as writer:
            original = json.loads(await writer.read(1))
        async with TableWriter("fare_attributes", connectionSource, result.namespace) as writer:
            copied = json.loads(await writer.read(1))
            created = json.loads(await writer.create({"fare_id": "3B", "price": 3}))

        assert copied == original
        assert created["id"] > copied["id"]

    @pytest.mark.asyncio
    async def test_namespaces_are_isolated(self, snapshotManager, connectionSource, namespace, countRows):
        """Edits to a fork never reach its source."""
        await self._seed(connectionSource, namespace)
        result = await snapshotManager.createNamespace(namespace)

        async with TableWriter("fare_attributes", connectionSource, result.namespace) as writer:
            await writer.update(1, {"fare_id": "9Z", "price": 9})
        async with TableWriter("feed_info", connectionSource, result.namespace) as writer:
            assert await writer.delete(1) == 1

        assert await countRows(namespace, "fare_attributes", fare_id="2A") == 1
        assert await countRows(namespace, "fare_rules", fare_id="2A") == 2
        assert await countRows(namespace, "feed_info") == 1
        assert await countRows(result.namespace, "fare_rules", fare_id="9Z") == 2
        assert await countRows(result.namespace, "feed_info") == 0

    @pytest.mark.asyncio
    async def test_unknown_source_rejected(self, snapshotManager, connectionSource, namespace):
        """A source that does not exist leaves no trace."""
        with pytest.raises(InvalidNamespaceError) as excInfo:
            await snapshotManager.createNamespace("ns_does_not_exist")

        assert excInfo.value.namespace == "ns_does_not_exist"
        assert await countFeeds(connectionSource) == 1

    @pytest.mark.asyncio
    async def test_malformed_source_rejected(self, snapshotManager, connectionSource, namespace):
        """Source identifiers that could not name a namespace are refused."""
        with pytest.raises(InvalidNamespaceError):
            await snapshotManager.createNamespace("ns; DROP TABLE feeds")

        assert await countFeeds(connectionSource) == 1


class TestAtomicity:
    """Tests for rollback of partially created namespaces."""

    @pytest.mark.asyncio
    async def test_failed_creation_leaves_nothing(self, snapshotManager, connectionSource, namespace, monkeypatch):
        """A failure after the tables exist rolls them back with the feeds row."""
        monkeypatch.setattr(snapshotManager, "generateNamespaceId", lambda: "ns_failed")

        async def failingCreate(*args, **kwargs):
            raise OperationalError("INSERT INTO feeds", {}, Exception("connection lost"))

        monkeypatch.setattr(crudFeed, "createFeedRecord", failingCreate)

        with pytest.raises(TransientDatabaseError):
            await snapshotManager.createNamespace(None)

        assert await countFeeds(connectionSource) == 1
        for table in tableRegistry:
            assert not await tableExists(connectionSource, "ns_failed", table.name)


class TestNamespaceLookup:
    """Tests for getNamespace and listNamespaces."""

    @pytest.mark.asyncio
    async def test_get_namespace(self, snapshotManager, namespace):
        """Registered namespaces are returned with their provenance."""
        info = await snapshotManager.getNamespace(namespace)
        assert info.namespace == namespace
        assert info.snapshotOf is None

    @pytest.mark.asyncio
    async def test_get_unknown_namespace(self, snapshotManager, namespace):
        """Unregistered namespaces raise InvalidNamespaceError."""
        with pytest.raises(InvalidNamespaceError):
            await snapshotManager.getNamespace("ns_missing")

    @pytest.mark.asyncio
    async def test_lookups_on_fresh_database(self, snapshotManager):
        """With no feeds table yet, nothing is registered."""
        with pytest.raises(InvalidNamespaceError):
            await snapshotManager.getNamespace("ns_abc")
        assert await snapshotManager.listNamespaces() == []

    @pytest.mark.asyncio
    async def test_fork_on_fresh_database(self, snapshotManager):
        """Forking before any namespace exists reports the missing source."""
        with pytest.raises(InvalidNamespaceError):
            await snapshotManager.createNamespace("ns_abc")

    @pytest.mark.asyncio
    async def test_list_namespaces(self, snapshotManager, namespace):
        """Every created namespace is listed."""
        fork = await snapshotManager.createNamespace(namespace)
        listed = {info.namespace: info for info in await snapshotManager.listNamespaces()}
        assert set(listed) == {namespace, fork.namespace}
        assert listed[fork.namespace].snapshotOf == namespace
