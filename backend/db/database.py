from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from core.config import settings


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str = None, echo: bool = None, **kwargs) -> AsyncEngine:
    return create_async_engine(
        database_url or settings.database_url,
        echo=settings.database_echo if echo is None else echo,
        **kwargs,
    )


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


def _import_models() -> None:
    # Registers every table on Base.metadata
    import db.catalog  # noqa: F401
    import db.location  # noqa: F401
    import db.order  # noqa: F401
    import db.inventory.stock  # noqa: F401
    import db.inventory.movement  # noqa: F401


async def create_db_and_tables(engine: AsyncEngine) -> None:
    _import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db_and_tables(engine: AsyncEngine) -> None:
    _import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

