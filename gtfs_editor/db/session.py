from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from gtfs_editor.core.config import Settings

def createEngine(settings: Settings) -> AsyncEngine:
    engine = create_async_engine(
        settings.databaseUrl,
        echo=settings.databaseEcho, # Set databaseEcho=True for SQL logging
        pool_pre_ping=settings.poolPrePing
    )
    if engine.dialect.name == "sqlite":
        enableTransactionalDdl(engine)
    return engine

def enableTransactionalDdl(engine: AsyncEngine) -> None:
    # pysqlite only opens a transaction before DML; emit BEGIN ourselves so
    # CREATE TABLE runs inside the same rollback unit as the inserts.
    @event.listens_for(engine.sync_engine, "connect")
    def onConnect(dbapiConnection, connectionRecord):
        dbapiConnection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def onBegin(conn):
        conn.exec_driver_sql("BEGIN")


class ConnectionSource:
    """Pooled connections shared by the namespace manager and every table writer."""

    def __init__(self, settings: Settings, engine: AsyncEngine = None):
        self.settings = settings
        self.engine = engine if engine is not None else createEngine(settings)
        self.sessionFactory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            autoflush=False,
            expire_on_commit=False
        )

    @property
    def dialectName(self) -> str:
        return self.engine.dialect.name

    @property
    def usesSchemas(self) -> bool:
        return self.dialectName == "postgresql"

    def newSession(self) -> AsyncSession:
        return self.sessionFactory()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self.sessionFactory() as session:
            yield session

    async def dispose(self) -> None:
        await self.engine.dispose()
