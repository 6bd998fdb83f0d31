"""Test configuration to ensure project package import resolution.

Adds the repository root to sys.path so `import salon` works in CI where the
checkout directory may not be on PYTHONPATH by default. Database tests run
against an aiosqlite file database created per test.
"""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

ROOT = Path(__file__).resolve().parents[3]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from salon.app.core import db  # noqa: E402
from salon.app.domain.models import Master, Salon, Service, User  # noqa: E402

KYIV = ZoneInfo("Europe/Kyiv")

# Monday 2030-01-14 .. Sunday 2030-01-20
WEEK_HOURS = [
    {"day": "Понеділок", "hours": "10:00 - 20:00"},
    {"day": "Вівторок", "hours": "10:00 - 20:00"},
    {"day": "Середа", "hours": "10:00 - 20:00"},
    {"day": "Четвер", "hours": "10:00 - 20:00"},
    {"day": "П'ятниця", "hours": "10:00 - 20:00"},
    {"day": "Субота", "hours": "11:00 - 16:00"},
    {"day": "Неділя", "hours": "Зачинено"},
]


@pytest.fixture
def now() -> datetime:
    """Thursday morning before the test week."""
    return datetime(2030, 1, 10, 9, 0, tzinfo=KYIV)


@pytest.fixture
def sqlite_db(tmp_path, monkeypatch):
    url = f"sqlite+aiosqlite:///{tmp_path / 'salon.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    # Each asyncio.run() gets a fresh loop; pooled aiosqlite connections must not outlive it
    monkeypatch.setattr(db, "_make_engine", lambda u: create_async_engine(u, poolclass=NullPool))
    db._reset_engine_for_tests()
    asyncio.run(db.init_db(force=True))
    yield url
    db._reset_engine_for_tests()


async def _seed(working_hours, chat_id, notifications_enabled) -> SimpleNamespace:
    async with db.get_session() as session:
        owner = User(
            email="owner@example.com",
            telegram_chat_id=chat_id,
            notifications_enabled=notifications_enabled,
        )
        session.add(owner)
        await session.flush()
        salon = Salon(
            slug="beauty-lab",
            name="Beauty Lab",
            type="hair",
            address="Хрещатик, 1",
            owner_id=owner.id,
            working_hours=working_hours,
        )
        session.add(salon)
        await session.flush()
        masters = [
            Master(salon_id=salon.id, name="Олена", role="Стиліст", sort_order=0),
            Master(salon_id=salon.id, name="Ірина", role="Колорист", sort_order=1),
        ]
        services = [
            Service(salon_id=salon.id, name="Стрижка", duration_minutes=45, price=Decimal("500")),
            Service(salon_id=salon.id, name="Укладка", duration_minutes=30, price=Decimal("300")),
            Service(salon_id=salon.id, name="Манікюр", duration_minutes=None, price=Decimal("400")),
            Service(salon_id=salon.id, name="Фарбування", duration_minutes=90, price=Decimal("1200")),
        ]
        session.add_all(masters + services)
        await session.commit()
        return SimpleNamespace(
            owner_id=owner.id,
            salon_id=salon.id,
            master_ids=[m.id for m in masters],
            haircut=services[0].id,
            styling=services[1].id,
            manicure=services[2].id,
            coloring=services[3].id,
        )


@pytest.fixture
def seeded(sqlite_db):
    return asyncio.run(_seed(WEEK_HOURS, "555000111", True))


@pytest.fixture
def seed_salon(sqlite_db):
    """Factory for tests that need custom hours or owner settings."""

    def _factory(working_hours=None, chat_id="555000111", notifications_enabled=True):
        return asyncio.run(_seed(working_hours or WEEK_HOURS, chat_id, notifications_enabled))

    return _factory
