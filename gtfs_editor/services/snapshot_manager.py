import time
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import false, func, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.schema import CreateSchema

from gtfs_editor.core.exceptions import BaseGtfsException, InvalidNamespaceError, translateDatabaseError
from gtfs_editor.crud.crud_feed import crudFeed
from gtfs_editor.db.models_db import FeedModel, NamespaceTables, validateNamespaceIdentifier
from gtfs_editor.db.session import ConnectionSource
from gtfs_editor.models.table_models import TableRegistry
from gtfs_editor.models.gtfs_tables import tableRegistry

MAX_ID_ATTEMPTS = 5

class NamespaceInfo(BaseModel):
    namespace: str
    snapshotOf: Optional[str] = None
    loadedDate: Optional[datetime] = None
    feedId: Optional[str] = None
    feedVersion: Optional[str] = None
    filename: Optional[str] = None
    md5: Optional[str] = None
    sha1: Optional[str] = None

    @classmethod
    def fromFeed(cls, feed: FeedModel) -> "NamespaceInfo":
        return cls(
            namespace=feed.namespace,
            snapshotOf=feed.snapshot_of,
            loadedDate=feed.loaded_date,
            feedId=feed.feed_id,
            feedVersion=feed.feed_version,
            filename=feed.filename,
            md5=feed.md5,
            sha1=feed.sha1
        )

class SnapshotResult(BaseModel):
    namespace: str # unique identifier used to address the new tables
    snapshotOf: Optional[str] = None
    loadedDate: datetime
    tableCounts: Dict[str, int] = Field(default_factory=dict)
    completionTimeMs: int = 0


class SnapshotManager:
    """Creates namespaces, empty or forked, each in a single transaction."""

    def __init__(self, connectionSource: ConnectionSource, registry: TableRegistry = tableRegistry):
        self.connectionSource = connectionSource
        self.registry = registry

    def generateNamespaceId(self) -> str:
        return f"{self.connectionSource.settings.namespacePrefix}_{uuid.uuid4().hex}"

    def tablesFor(self, namespace: str) -> NamespaceTables:
        return NamespaceTables(namespace, self.connectionSource.usesSchemas, self.registry)

    async def initialize(self) -> None:
        try:
            async with self.connectionSource.session() as db:
                async with db.begin():
                    await self._ensureFeedsTable(db)
        except SQLAlchemyError as e:
            raise translateDatabaseError(e, "Could not create the feeds table") from e

    async def createNamespace(self, sourceNamespace: Optional[str] = None) -> SnapshotResult:
        startTime = time.monotonic()
        if sourceNamespace is not None:
            validateNamespaceIdentifier(sourceNamespace)

        try:
            async with self.connectionSource.session() as db:
                async with db.begin():
                    await self._ensureFeedsTable(db)

                    sourceFeed = None
                    if sourceNamespace is not None:
                        sourceFeed = await crudFeed.getFeedByNamespace(db, sourceNamespace)
                        if sourceFeed is None:
                            raise InvalidNamespaceError(sourceNamespace)

                    namespace = await self._uniqueNamespaceId(db)
                    targetTables = self.tablesFor(namespace)
                    connection = await db.connection()
                    if targetTables.usesSchemas:
                        await connection.execute(CreateSchema(namespace))
                    await connection.run_sync(targetTables.metadata.create_all)

                    loadedDate = datetime.now(timezone.utc).replace(tzinfo=None)
                    await crudFeed.createFeedRecord(db, namespace, loadedDate, source=sourceFeed)

                    tableCounts = {}
                    if sourceFeed is not None:
                        tableCounts = await self._copyRows(db, self.tablesFor(sourceNamespace), targetTables)
        except BaseGtfsException:
            raise
        except SQLAlchemyError as e:
            logger.warning(f"Namespace creation rolled back: {e}")
            raise translateDatabaseError(e, "Could not create namespace") from e

        completionTimeMs = int((time.monotonic() - startTime) * 1000)
        if sourceNamespace is None:
            logger.info(f"Created empty namespace {namespace} in {completionTimeMs} ms")
        else:
            logger.info(
                f"Created namespace {namespace} from {sourceNamespace} "
                f"({sum(tableCounts.values()):,} rows) in {completionTimeMs} ms"
            )
        return SnapshotResult(
            namespace=namespace,
            snapshotOf=sourceNamespace,
            loadedDate=loadedDate,
            tableCounts=tableCounts,
            completionTimeMs=completionTimeMs
        )

    async def getNamespace(self, namespace: str) -> NamespaceInfo:
        validateNamespaceIdentifier(namespace)
        try:
            async with self.connectionSource.session() as db:
                feed = await crudFeed.getFeedByNamespace(db, namespace)
        except SQLAlchemyError as e:
            raise translateDatabaseError(e, "Could not look up namespace") from e
        if feed is None:
            raise InvalidNamespaceError(namespace)
        return NamespaceInfo.fromFeed(feed)

    async def listNamespaces(self) -> List[NamespaceInfo]:
        try:
            async with self.connectionSource.session() as db:
                feeds = await crudFeed.listFeeds(db)
        except SQLAlchemyError as e:
            raise translateDatabaseError(e, "Could not list namespaces") from e
        return [NamespaceInfo.fromFeed(f) for f in feeds]

    async def _ensureFeedsTable(self, db: AsyncSession) -> None:
        connection = await db.connection()
        await connection.run_sync(FeedModel.metadata.create_all, tables=[FeedModel.__table__])

    async def _uniqueNamespaceId(self, db: AsyncSession) -> str:
        for _ in range(MAX_ID_ATTEMPTS):
            candidate = self.generateNamespaceId()
            if not await crudFeed.namespaceExists(db, candidate):
                return candidate
            logger.warning(f"Generated namespace {candidate} already exists, retrying")
        raise InvalidNamespaceError(candidate, reason="could not be generated uniquely")

    async def _copyRows(self, db: AsyncSession, sourceTables: NamespaceTables, targetTables: NamespaceTables) -> Dict[str, int]:
        tableCounts = {}
        for definition, targetTable in targetTables:
            sourceTable = sourceTables.get(definition)
            columnNames = [c.name for c in targetTable.columns]
            await db.execute(
                insert(targetTable).from_select(columnNames, select(*[sourceTable.c[n] for n in columnNames]))
            )
            if targetTables.usesSchemas:
                # Copied ids bypass the serial sequence; move it past them.
                await db.execute(select(func.setval(
                    func.pg_get_serial_sequence(targetTable.fullname, "id"),
                    func.coalesce(func.max(targetTable.c.id), 0) + 1,
                    false()
                )))
            count = await db.scalar(select(func.count()).select_from(targetTable))
            tableCounts[definition.name] = count
            logger.debug(f"Copied {count:,} rows into {targetTable.fullname}")
        return tableCounts
