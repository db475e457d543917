from collections.abc import AsyncGenerator
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from core.config import settings


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


engine = create_async_engine(settings.database_url, echo=settings.database_echo)
async_session_maker = async_sessionmaker(engine, expire_on_commit=False)


async def create_db_and_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session


# Models register themselves on Base.metadata when imported.
from .users import User  # noqa: E402,F401
from .catalog import Category, Specialty  # noqa: E402,F401
from .inventory.item import StockItem  # noqa: E402,F401
from .inventory.allocation import StockAllocation  # noqa: E402,F401
from .inventory.movement import StockMovement  # noqa: E402,F401
from .requests import InventoryRequest, RequestItem  # noqa: E402,F401
