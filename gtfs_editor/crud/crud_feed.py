from datetime import datetime
from typing import List, Optional

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from gtfs_editor.db.models_db import FeedModel

class CRUDFeed:
    async def feedsTableExists(self, db: AsyncSession) -> bool:
        connection = await db.connection()
        return await connection.run_sync(lambda syncConn: inspect(syncConn).has_table(FeedModel.__tablename__))

    async def getFeedByNamespace(self, db: AsyncSession, namespace: str) -> Optional[FeedModel]:
        if not await self.feedsTableExists(db):
            return None
        stmt = select(FeedModel).where(FeedModel.namespace == namespace)
        result = await db.execute(stmt)
        return result.scalars().first()

    async def namespaceExists(self, db: AsyncSession, namespace: str) -> bool:
        if not await self.feedsTableExists(db):
            return False
        stmt = select(FeedModel.namespace).where(FeedModel.namespace == namespace)
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def listFeeds(self, db: AsyncSession) -> List[FeedModel]:
        if not await self.feedsTableExists(db):
            return []
        stmt = select(FeedModel).order_by(FeedModel.loaded_date, FeedModel.namespace)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def createFeedRecord(
        self,
        db: AsyncSession,
        namespace: str,
        loadedDate: datetime,
        source: Optional[FeedModel] = None
    ) -> FeedModel:
        # A fork inherits the provenance of the feed it was copied from.
        dbFeed = FeedModel(
            namespace=namespace,
            md5=source.md5 if source else None,
            sha1=source.sha1 if source else None,
            feed_id=source.feed_id if source else None,
            feed_version=source.feed_version if source else None,
            filename=source.filename if source else None,
            loaded_date=loadedDate,
            snapshot_of=source.namespace if source else None
        )
        db.add(dbFeed)
        await db.flush()
        return dbFeed

crudFeed = CRUDFeed()
