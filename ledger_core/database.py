"""
Ledger Core - Database Configuration

Async engine and session factory for the SQL repositories (SQLAlchemy 2.0).
Nothing connects at import time; the module-level engine opens its pool on
first use.
"""

from typing import Optional

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from ledger_core.config import Settings, settings


# Constraint names must stay stable across environments; the SQL
# repository matches on them when a commit is rejected.
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}


class LedgerBase(DeclarativeBase):
    """Declarative base shared by the ledger and consolidation tables."""
    metadata = MetaData(naming_convention=convention)


def build_engine(database_url: Optional[str] = None, config: Optional[Settings] = None) -> AsyncEngine:
    """
    Create the async engine for the ledger store.

    Args:
        database_url: Overrides ``config.database_url_async`` (integration tests)
        config: Settings to read pool sizing from; the process settings by default
    """
    config = config or settings
    return create_async_engine(
        database_url or config.database_url_async,
        echo=config.debug,
        pool_pre_ping=True,
        pool_size=config.database_pool_size,
        max_overflow=config.database_max_overflow,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    """
    Session factory handed to the SQL repositories.

    Objects stay readable after commit because the repositories convert
    rows to schemas after the transaction has closed.
    """
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine()
async_session_maker = build_session_factory(engine)


async def create_ledger_tables(bind: Optional[AsyncEngine] = None) -> None:
    """Create every ledger and consolidation table on ``bind``."""
    import ledger_core.models  # noqa: F401  (registers the tables on LedgerBase.metadata)

    async with (bind or engine).begin() as conn:
        await conn.run_sync(LedgerBase.metadata.create_all)


async def drop_ledger_tables(bind: Optional[AsyncEngine] = None) -> None:
    import ledger_core.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(LedgerBase.metadata.drop_all)
