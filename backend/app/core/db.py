import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app import models  # noqa: F401  registers the tables on SQLModel.metadata
from app.core.config import settings
from app.errors import ConflictError, StorageError

logger = logging.getLogger(__name__)

EXPECTED_TABLES = ("chat", "prompt_templates")

SessionFactory = async_sessionmaker[AsyncSession]

engine = create_async_engine(settings.SQLALCHEMY_DATABASE_URI)


def build_session_factory(bind: AsyncEngine) -> SessionFactory:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


session_factory = build_session_factory(engine)


@asynccontextmanager
async def transaction(factory: SessionFactory) -> AsyncIterator[AsyncSession]:
    """Run a unit of work in its own session.

    Commits when the block exits cleanly and rolls back on any error. The
    session is always closed. Integrity violations surface as
    ``ConflictError`` and other backend failures as ``StorageError``;
    errors raised by the block itself propagate unchanged.
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except IntegrityError as e:
            await session.rollback()
            logger.warning("Constraint violation, transaction rolled back: %s", e.orig)
            raise ConflictError(
                "A concurrent update violated a uniqueness constraint. Retry the operation."
            ) from e
        except SQLAlchemyError as e:
            await session.rollback()
            logger.exception("Storage failure, transaction rolled back")
            raise StorageError("Database error") from e
        except Exception:
            await session.rollback()
            raise


async def init_db(bind: AsyncEngine = engine) -> None:
    """Create missing tables and indexes. Existing ones are left untouched."""
    async with bind.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables ensured: %s", ", ".join(EXPECTED_TABLES))


async def get_table_names(bind: AsyncEngine = engine) -> list[str]:
    async with bind.connect() as conn:
        return await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
