"""
Seed Admissions Data

Creates the first admin account and publishes appointment slots for the
coming weekdays, then prints an access token for the admin.

Usage:
    cd apps/api
    python scripts/seed_admissions.py admin@example.com --days 10
"""

import argparse
import asyncio
import sys
from datetime import date, timedelta
from pathlib import Path

# Add the src directory to the path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.core.config import settings
from app.core.database import Base
from app.core.security import create_access_token
from app.modules.admissions.models import Account, AppointmentSlot, Role

PERIODS = ("AM", "PM")


def upcoming_weekdays(start: date, count: int) -> list[date]:
    days = []
    current = start
    while len(days) < count:
        current += timedelta(days=1)
        if current.weekday() < 5:
            days.append(current)
    return days


async def seed(email: str, days: int) -> None:
    """Create the admin account and slots if they don't exist."""

    engine = create_async_engine(settings.database_url, echo=False)
    async_session = async_sessionmaker(engine, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as db:
        result = await db.execute(select(Account).where(Account.email == email))
        admin = result.scalar_one_or_none()

        if admin:
            print(f"Admin already exists: {email}")
        else:
            admin = Account(email=email, role=Role.ADMIN, permissions={})
            db.add(admin)
            await db.commit()
            await db.refresh(admin)
            print("Admin created successfully!")

        print(f"  Email: {email}")
        print(f"  ID: {admin.id}")

        created = 0
        for slot_date in upcoming_weekdays(date.today(), days):
            for period in PERIODS:
                existing = await db.execute(
                    select(AppointmentSlot).where(
                        AppointmentSlot.slot_date == slot_date,
                        AppointmentSlot.period == period,
                    )
                )
                if existing.scalar_one_or_none() is None:
                    db.add(AppointmentSlot(slot_date=slot_date, period=period, published=True))
                    created += 1
        await db.commit()
        print(f"Published {created} appointment slots")

        token = create_access_token(str(admin.id), Role.ADMIN.value, email=email)
        print(f"  Access token: {token}")

    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("email", help="Email of the admin account")
    parser.add_argument("--days", type=int, default=10, help="Weekdays of slots to publish")
    args = parser.parse_args()
    asyncio.run(seed(args.email, args.days))
