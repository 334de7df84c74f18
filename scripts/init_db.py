"""Script to initialize a local database, optionally with demo users."""

import argparse
import asyncio
from datetime import timedelta

from sqlalchemy import insert, text

from carebook.config import settings
from carebook.core.security import create_access_token
from carebook.database import engine
from carebook.models import metadata, users
from carebook.models.appointments import NO_OVERLAP_CONSTRAINT, no_overlap_constraint_ddl

DEMO_USERS = [
    {
        "full_name": "Dr. Asha Menon",
        "email": "asha.menon@example.com",
        "phone": "+15550100",
        "role": "doctor",
        "specialization": "Cardiology",
    },
    {
        "full_name": "Dr. Tomas Lindqvist",
        "email": "tomas.lindqvist@example.com",
        "phone": "+15550101",
        "role": "doctor",
        "specialization": "Dermatology",
    },
    {
        "full_name": "Jordan Patel",
        "email": "jordan.patel@example.com",
        "phone": "+15550200",
        "role": "patient",
    },
]


async def init_db(seed: bool) -> None:
    """Create extensions, tables and the overlap constraint."""
    async with engine.begin() as conn:
        await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))
        await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "btree_gist"'))

        await conn.run_sync(metadata.create_all)
        await conn.execute(
            text(f"ALTER TABLE appointments DROP CONSTRAINT IF EXISTS {NO_OVERLAP_CONSTRAINT}")
        )
        await conn.execute(text(no_overlap_constraint_ddl(settings.conflict_window_minutes)))
        print("✓ Database initialized successfully!")

        for user in DEMO_USERS if seed else []:
            result = await conn.execute(insert(users).values(**user).returning(users.c.id))
            user_id = result.scalar_one()
            token = create_access_token(
                {"sub": str(user_id), "role": user["role"]},
                expires_delta=timedelta(days=7),
            )
            print(f"  {user['role']:<8} {user['full_name']:<22} {user_id}")
            print(f"           token: {token}")

    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--seed", action="store_true", help="insert demo doctors and a patient")
    args = parser.parse_args()
    asyncio.run(init_db(args.seed))
