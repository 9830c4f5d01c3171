from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Union

from loguru import logger
from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import RowMapping
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gtfs_editor.core.exceptions import (
    InvalidNamespaceError, NotFoundError, ValidationError, translateDatabaseError
)
from gtfs_editor.crud.crud_feed import crudFeed
from gtfs_editor.db.models_db import NamespaceTables
from gtfs_editor.db.session import ConnectionSource
from gtfs_editor.models.table_models import INTEGER_MAX, INTEGER_MIN, TableDefinition, TableRegistry
from gtfs_editor.models.gtfs_tables import tableRegistry
from gtfs_editor.services.result_codec import ResultCodec, resultCodec

Payload = Union[str, bytes, Mapping[str, Any]]


class TableWriter:
    """Writes entities of one table, with their children, inside one namespace."""

    def __init__(
        self,
        table: Union[str, TableDefinition],
        connectionSource: ConnectionSource,
        namespace: str,
        session: Optional[AsyncSession] = None,
        registry: TableRegistry = tableRegistry,
        codec: ResultCodec = resultCodec
    ):
        self.table = registry.resolve(table)
        self.childTable = registry.childOf(self.table)
        self.connectionSource = connectionSource
        self.tables = NamespaceTables(namespace, connectionSource.usesSchemas, registry)
        self.namespace = self.tables.namespace
        self.codec = codec
        self._session = session
        self._ownsSession = session is None
        self._pending = False
        self._namespaceChecked = False

    @classmethod
    async def open(
        cls,
        table: Union[str, TableDefinition],
        connectionSource: ConnectionSource,
        namespace: str,
        session: Optional[AsyncSession] = None
    ) -> "TableWriter":
        writer = cls(table, connectionSource, namespace, session=session)
        await writer.checkNamespace()
        return writer

    @property
    def hasPendingChanges(self) -> bool:
        return self._pending

    async def checkNamespace(self) -> None:
        if self._namespaceChecked:
            return
        try:
            async with self._readSession() as db:
                exists = await crudFeed.namespaceExists(db, self.namespace)
        except SQLAlchemyError as e:
            raise translateDatabaseError(e, f"Could not look up namespace {self.namespace}") from e
        if not exists:
            raise InvalidNamespaceError(self.namespace)
        self._namespaceChecked = True

    async def create(self, payload: Payload, commitNow: bool = True) -> str:
        data = self.codec.parsePayload(payload)
        row = self.codec.decode(data, self.table)
        children = self.codec.decodeChildren(data, self.table, self._linkValue(row))
        await self.checkNamespace()

        parentTable = self.tables.get(self.table)
        async with self._transactionScope(commitNow) as db:
            result = await db.execute(insert(parentTable).values(row))
            newId = result.inserted_primary_key[0]
            if children:
                await self._insertChildren(db, children)
            entity = await self._loadEntity(db, newId)

        logger.info(f"Created {self.table.name} {newId} in {self.namespace}" + self._childSuffix(children))
        return self.codec.toJson(entity)

    async def update(self, id: int, payload: Payload, commitNow: bool = True) -> str:
        id = self._coerceId(id)
        await self.checkNamespace()
        if not self._idInRange(id):
            raise NotFoundError(self.table.name, id)

        parentTable = self.tables.get(self.table)
        async with self._transactionScope(commitNow) as db:
            existing = await self._fetchRow(db, id)
            if existing is None:
                raise NotFoundError(self.table.name, id)
            data = self.codec.parsePayload(payload)
            row = self.codec.decode(data, self.table)
            children = self.codec.decodeChildren(data, self.table, self._linkValue(row))
            await db.execute(update(parentTable).where(parentTable.c.id == id).values(row))
            if self.childTable is not None:
                await self._reconcileChildren(db, self._linkValue(existing), self._linkValue(row), children)
            entity = await self._loadEntity(db, id)

        logger.info(f"Updated {self.table.name} {id} in {self.namespace}" + self._childSuffix(children))
        return self.codec.toJson(entity)

    async def delete(self, id: int, commitNow: bool = True) -> int:
        id = self._coerceId(id)
        await self.checkNamespace()
        if not self._idInRange(id):
            logger.info(f"Deleted 0 {self.table.name} record(s) with id {id} from {self.namespace}")
            return 0

        parentTable = self.tables.get(self.table)
        async with self._transactionScope(commitNow) as db:
            existing = await self._fetchRow(db, id)
            if existing is None:
                deletedCount = 0
            else:
                linkValue = self._linkValue(existing)
                if self.childTable is not None and linkValue is not None:
                    childTable = self.tables.get(self.childTable)
                    foreignKey = childTable.c[self.table.child.foreignKeyField]
                    await db.execute(delete(childTable).where(foreignKey == linkValue))
                result = await db.execute(delete(parentTable).where(parentTable.c.id == id))
                deletedCount = result.rowcount

        logger.info(f"Deleted {deletedCount} {self.table.name} record(s) with id {id} from {self.namespace}")
        return deletedCount

    async def read(self, id: int) -> str:
        id = self._coerceId(id)
        await self.checkNamespace()
        if not self._idInRange(id):
            raise NotFoundError(self.table.name, id)
        try:
            async with self._readSession() as db:
                entity = await self._loadEntity(db, id)
        except SQLAlchemyError as e:
            raise translateDatabaseError(e, f"Could not read {self.tables.qualifiedName(self.table)}") from e
        return self.codec.toJson(entity)

    async def commit(self) -> None:
        if self._session is None:
            return
        try:
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._discard()
            raise translateDatabaseError(e, f"Could not commit changes to {self.namespace}") from e
        self._pending = False
        await self._releaseSession()

    async def rollback(self) -> None:
        if self._session is None:
            return
        await self._session.rollback()
        self._pending = False
        await self._releaseSession()

    async def close(self) -> None:
        if self._pending and self._ownsSession:
            logger.warning(f"Discarding uncommitted changes to {self.table.name} in {self.namespace}")
            await self.rollback()
            return
        self._pending = False
        await self._releaseSession()

    async def __aenter__(self) -> "TableWriter":
        await self.checkNamespace()
        return self

    async def __aexit__(self, excType, exc, tb) -> None:
        await self.close()

    def _acquireSession(self) -> AsyncSession:
        if self._session is None:
            self._session = self.connectionSource.newSession()
        return self._session

    async def _releaseSession(self) -> None:
        if self._ownsSession and self._session is not None:
            session, self._session = self._session, None
            await session.close()

    async def _discard(self) -> None:
        if self._session is None:
            return
        try:
            await self._session.rollback()
        except SQLAlchemyError as e:
            logger.opt(exception=e).warning(f"Rollback failed for {self.namespace}")
        self._pending = False
        await self._releaseSession()

    @asynccontextmanager
    async def _readSession(self) -> AsyncIterator[AsyncSession]:
        # Reads join the pending transaction so uncommitted writes are visible.
        if self._session is not None:
            yield self._session
        else:
            async with self.connectionSource.session() as db:
                yield db

    @asynccontextmanager
    async def _transactionScope(self, commitNow: bool) -> AsyncIterator[AsyncSession]:
        db = self._acquireSession()
        joined = db.in_transaction()
        try:
            yield db
        except (NotFoundError, ValidationError):
            # Raised before any mutating statement; earlier pending work stays intact.
            if not joined:
                await self._releaseSession()
            raise
        except SQLAlchemyError as e:
            logger.warning(f"Rolling back {self.table.name} write in {self.namespace}: {type(e).__name__}")
            await self._discard()
            raise translateDatabaseError(e, f"Could not write to {self.tables.qualifiedName(self.table)}") from e
        except BaseException:
            await self._discard()
            raise
        if commitNow:
            await self.commit()
        else:
            self._pending = True

    async def _fetchRow(self, db: AsyncSession, id: int) -> Optional[RowMapping]:
        parentTable = self.tables.get(self.table)
        result = await db.execute(select(parentTable).where(parentTable.c.id == id))
        return result.mappings().first()

    async def _fetchChildren(self, db: AsyncSession, linkValue: Any) -> List[RowMapping]:
        if self.childTable is None or linkValue is None:
            return []
        childTable = self.tables.get(self.childTable)
        foreignKey = childTable.c[self.table.child.foreignKeyField]
        result = await db.execute(select(childTable).where(foreignKey == linkValue).order_by(childTable.c.id))
        return list(result.mappings().all())

    async def _insertChildren(self, db: AsyncSession, children: List[Dict[str, Any]]) -> None:
        childTable = self.tables.get(self.childTable)
        for child in children:
            await db.execute(insert(childTable).values(child))

    async def _reconcileChildren(
        self, db: AsyncSession, oldLink: Any, newLink: Any, children: Optional[List[Dict[str, Any]]]
    ) -> None:
        childTable = self.tables.get(self.childTable)
        foreignKeyField = self.table.child.foreignKeyField
        foreignKey = childTable.c[foreignKeyField]
        if children is not None:
            # Replace semantics: the payload carries the complete child set.
            if oldLink is not None:
                await db.execute(delete(childTable).where(foreignKey == oldLink))
            await self._insertChildren(db, children)
        elif oldLink is not None and oldLink != newLink:
            await db.execute(update(childTable).where(foreignKey == oldLink).values({foreignKeyField: newLink}))

    async def _loadEntity(self, db: AsyncSession, id: int) -> Dict[str, Any]:
        row = await self._fetchRow(db, id)
        if row is None:
            raise NotFoundError(self.table.name, id)
        children = await self._fetchChildren(db, self._linkValue(row))
        return self.codec.encode(self.table, row, children)

    def _linkValue(self, row: Mapping[str, Any]) -> Any:
        if self.table.child is None:
            return None
        return row.get(self.table.child.foreignKeyField)

    def _childSuffix(self, children: Optional[List[Dict[str, Any]]]) -> str:
        if children is None or self.childTable is None:
            return ""
        return f" with {len(children)} {self.childTable.name}"

    def _coerceId(self, id: Any) -> int:
        if isinstance(id, bool):
            raise ValidationError(field="id", message="must be an integer")
        try:
            return int(id)
        except (TypeError, ValueError) as e:
            raise ValidationError(field="id", message="must be an integer") from e

    def _idInRange(self, id: int) -> bool:
        # Ids outside the column range cannot name a row; never send them to the driver.
        return INTEGER_MIN <= id <= INTEGER_MAX
