import asyncio
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gtfs_editor.core.config import Settings, getSettings
from gtfs_editor.core.exceptions import translateDatabaseError
from gtfs_editor.core.logging import configureLogging
from gtfs_editor.crud.table_writer import TableWriter
from gtfs_editor.db.session import ConnectionSource
from gtfs_editor.models.table_models import TableDefinition
from gtfs_editor.services.snapshot_manager import SnapshotManager, SnapshotResult

TableRef = Union[str, TableDefinition]
Payload = Union[str, bytes, Mapping[str, Any]]

class EditorService:
    """Entry points consumed by the editor API; commitNow=False calls share one batch."""

    def __init__(self, connectionSource: ConnectionSource):
        self.connectionSource = connectionSource
        self.snapshotManager = SnapshotManager(connectionSource)
        self._session: Optional[AsyncSession] = None
        # An AsyncSession serves one task at a time; batched calls queue on this.
        self._batchLock = asyncio.Lock()

    @classmethod
    def fromSettings(cls, settings: Optional[Settings] = None) -> "EditorService":
        settings = settings or getSettings()
        configureLogging(settings)
        return cls(ConnectionSource(settings))

    @property
    def inTransaction(self) -> bool:
        return self._session is not None

    async def createNamespace(self, sourceNamespace: Optional[str] = None) -> SnapshotResult:
        return await self.snapshotManager.createNamespace(sourceNamespace)

    async def create(self, tableRef: TableRef, namespace: str, payload: Payload, commitNow: bool = True) -> str:
        return await self._run(tableRef, namespace, commitNow, lambda writer: writer.create(payload, commitNow=commitNow))

    async def update(self, tableRef: TableRef, namespace: str, id: int, payload: Payload, commitNow: bool = True) -> str:
        return await self._run(tableRef, namespace, commitNow, lambda writer: writer.update(id, payload, commitNow=commitNow))

    async def delete(self, tableRef: TableRef, namespace: str, id: int, commitNow: bool = True) -> int:
        return await self._run(tableRef, namespace, commitNow, lambda writer: writer.delete(id, commitNow=commitNow))

    async def read(self, tableRef: TableRef, namespace: str, id: int) -> str:
        if self._session is None:
            return await self._read(tableRef, namespace, id)
        async with self._batchLock:
            return await self._read(tableRef, namespace, id)

    async def commit(self) -> None:
        async with self._batchLock:
            if self._session is None:
                return
            session, self._session = self._session, None
            try:
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise translateDatabaseError(e, "Could not commit batched edits") from e
            finally:
                await session.close()

    async def rollback(self) -> None:
        async with self._batchLock:
            await self._discardBatch()

    async def close(self) -> None:
        async with self._batchLock:
            if self._session is not None:
                logger.warning("Discarding uncommitted batched edits")
                await self._discardBatch()

    async def __aenter__(self) -> "EditorService":
        return self

    async def __aexit__(self, excType, exc, tb) -> None:
        await self.close()

    async def _discardBatch(self) -> None:
        if self._session is None:
            return
        session, self._session = self._session, None
        try:
            await session.rollback()
        finally:
            await session.close()

    async def _read(self, tableRef: TableRef, namespace: str, id: int) -> str:
        async with await TableWriter.open(tableRef, self.connectionSource, namespace, session=self._session) as writer:
            return await writer.read(id)

    async def _run(self, tableRef: TableRef, namespace: str, commitNow: bool, operation: Callable[[TableWriter], Awaitable[Any]]) -> Any:
        if commitNow and self._session is None:
            # Independent transaction on its own session.
            async with await TableWriter.open(tableRef, self.connectionSource, namespace) as writer:
                return await operation(writer)

        async with self._batchLock:
            if not commitNow and self._session is None:
                self._session = self.connectionSource.newSession()
            async with await TableWriter.open(tableRef, self.connectionSource, namespace, session=self._session) as writer:
                result = await operation(writer)
            if commitNow and self._session is not None:
                # The writer committed the joined batch along with its own change.
                session, self._session = self._session, None
                await session.close()
            return result
