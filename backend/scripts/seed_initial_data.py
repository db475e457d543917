"""
Seed default categories, specialties and the first users.

Run locally:
  python backend/scripts/seed_initial_data.py

It uses the same DATABASE_URL as the backend (dotenv supported by core.config).
Users are only created on an empty users table; categories and specialties
are added when missing.
"""

from __future__ import annotations

import asyncio
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from fastapi_users.password import PasswordHelper  # noqa: E402
from sqlalchemy import func, select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from core.permissions import Role  # noqa: E402
from db.database import async_session_maker, create_db_and_tables, Category, Specialty  # noqa: E402
from db.users import User  # noqa: E402


password_helper = PasswordHelper()


DEFAULT_CATEGORIES: list[tuple[str, str]] = [
    ("Brochures", "bg-blue-500"),
    ("Samples", "bg-green-500"),
    ("Gifts", "bg-purple-500"),
    ("Banners", "bg-yellow-500"),
    ("Digital Media", "bg-indigo-500"),
    ("Other", "bg-gray-500"),
]

DEFAULT_SPECIALTIES: list[tuple[str, str]] = [
    ("CNS", "Central Nervous System"),
    ("Primary Care", "Primary Healthcare"),
    ("Cardiology", "Cardiovascular Medicine"),
]


@dataclass(frozen=True)
class SeedUser:
    email: str
    password: str
    name: str
    role: Role
    region: str
    specialty: Optional[str] = None
    is_superuser: bool = False


SEED_USERS: list[SeedUser] = [
    SeedUser(
        email="admin@example.com",
        password=os.getenv("SEED_ADMIN_PASSWORD", "admin123"),
        name="System Administrator",
        role=Role.ADMIN,
        region="Global",
        is_superuser=True,
    ),
    SeedUser(
        email="stockkeeper@example.com",
        password=os.getenv("SEED_STOCKKEEPER_PASSWORD", "stock123"),
        name="Stock Keeper",
        role=Role.STOCK_KEEPER,
        region="Main",
        specialty="CNS",
    ),
    SeedUser(
        email="productmanager@example.com",
        password=os.getenv("SEED_PRODUCTMANAGER_PASSWORD", "product123"),
        name="Product Manager",
        role=Role.PRODUCT_MANAGER,
        region="North",
        specialty="CNS",
    ),
]


async def seed(db: AsyncSession) -> dict:
    created = {"categories": 0, "specialties": 0, "users": 0}

    for name, color in DEFAULT_CATEGORIES:
        res = await db.execute(select(Category.id).where(func.lower(Category.name) == name.lower()))
        if res.scalar_one_or_none() is None:
            db.add(Category(name=name, color=color))
            created["categories"] += 1

    specialties: dict[str, Specialty] = {}
    for name, description in DEFAULT_SPECIALTIES:
        res = await db.execute(select(Specialty).where(func.lower(Specialty.name) == name.lower()))
        s = res.scalar_one_or_none()
        if s is None:
            s = Specialty(name=name, description=description)
            db.add(s)
            created["specialties"] += 1
        specialties[name] = s
    await db.flush()

    existing_users = await db.execute(select(User.id).limit(1))
    if existing_users.scalar_one_or_none() is None:
        for su in SEED_USERS:
            specialty = specialties.get(su.specialty) if su.specialty else None
            db.add(
                User(
                    email=su.email,
                    hashed_password=password_helper.hash(su.password),
                    name=su.name,
                    role=su.role.value,
                    region=su.region,
                    specialty_id=specialty.id if specialty else None,
                    is_active=True,
                    is_superuser=su.is_superuser,
                    is_verified=True,
                )
            )
            created["users"] += 1

    await db.commit()
    return created


async def main() -> None:
    await create_db_and_tables()
    async with async_session_maker() as db:
        created = await seed(db)

    print(
        f"Done. Categories created: {created['categories']}. "
        f"Specialties created: {created['specialties']}. "
        f"Users created: {created['users']}."
    )
    if created["users"]:
        for su in SEED_USERS:
            print(f"  {su.role.label}: {su.email}")


if __name__ == "__main__":
    asyncio.run(main())
