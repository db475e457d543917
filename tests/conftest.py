import itertools
import os

# Must be set before `core.config` is imported anywhere.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ALLOW_CENTRAL_FALLBACK"] = "True"

import pytest  # noqa: E402
from sqlalchemy import func, select  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

from core.permissions import Role  # noqa: E402
from db.database import (  # noqa: E402
    Base,
    Category,
    StockAllocation,
    StockItem,
    StockMovement,
)
from db.users import User  # noqa: E402


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def category_id(db):
    c = Category(name="Brochures", color="bg-blue-500")
    db.add(c)
    await db.commit()
    return c.id


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    async def _make(role: Role = Role.MEDICAL_REP, *, is_superuser: bool = False) -> User:
        n = next(counter)
        user = User(
            email=f"user{n}@example.com",
            hashed_password="not-a-real-hash",
            name=f"User {n}",
            role=role.value,
            is_active=True,
            is_superuser=is_superuser,
            is_verified=True,
        )
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest.fixture
def make_item(db, category_id):
    counter = itertools.count(1)

    async def _make(quantity: int = 100, **kwargs) -> StockItem:
        n = next(counter)
        item = StockItem(
            name=kwargs.pop("name", f"Item {n}"),
            category_id=category_id,
            quantity=quantity,
            **kwargs,
        )
        db.add(item)
        await db.commit()
        return item

    return _make


async def allocation_qty(db, stock_item_id, user_id) -> int:
    res = await db.execute(
        select(StockAllocation.quantity).where(
            StockAllocation.stock_item_id == stock_item_id,
            StockAllocation.user_id == user_id,
        )
    )
    return int(res.scalar_one_or_none() or 0)


async def allocation_rows(db, stock_item_id=None) -> int:
    stmt = select(func.count()).select_from(StockAllocation)
    if stock_item_id is not None:
        stmt = stmt.where(StockAllocation.stock_item_id == stock_item_id)
    return int((await db.execute(stmt)).scalar_one())


async def movement_rows(db, stock_item_id=None) -> int:
    stmt = select(func.count()).select_from(StockMovement)
    if stock_item_id is not None:
        stmt = stmt.where(StockMovement.stock_item_id == stock_item_id)
    return int((await db.execute(stmt)).scalar_one())


async def item_quantity(db, stock_item_id) -> int:
    res = await db.execute(select(StockItem.quantity).where(StockItem.id == stock_item_id))
    return int(res.scalar_one())
