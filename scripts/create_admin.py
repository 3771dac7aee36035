#!/usr/bin/env python3
"""
Bootstrap script: create the tables, seed reference data and add a
super_admin user.

Usage:
    python scripts/create_admin.py admin@example.com 'S3cretPass!' Ada Admin

Reads DATABASE_URL and the other settings from the environment / .env.
"""
import asyncio
import sys

from leadcrm.core.errors import AppError
from leadcrm.core.logging_config import setup_logging
from leadcrm.db.base import async_session_maker, engine, init_db
from leadcrm.db.seed import seed_reference_data
from leadcrm.services import credentials


async def main(email: str, password: str, first_name: str, last_name: str) -> int:
    setup_logging()
    await init_db()

    async with async_session_maker() as session:
        await seed_reference_data(session)
        try:
            user = await credentials.create_account(
                session,
                email=email,
                password=password,
                first_name=first_name,
                last_name=last_name,
                role_name="super_admin",
            )
        except AppError as exc:
            await session.rollback()
            print(f"Could not create admin: {exc.message}")
            return 1
        user.email_verified = True
        user.email_verification_token = None
        await session.commit()

    await engine.dispose()
    print(f"Created super_admin {email} ({user.id})")
    return 0


if __name__ == "__main__":
    if len(sys.argv) != 5:
        print(__doc__)
        sys.exit(2)
    sys.exit(asyncio.run(main(*sys.argv[1:])))
