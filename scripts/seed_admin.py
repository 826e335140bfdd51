"""
Seed Admin Account

Creates the first admin account in the ``staff`` table.
Run this script once after migrating a new database.

Usage:
    SEED_ADMIN_EMAIL=... SEED_ADMIN_PASSWORD=... python scripts/seed_admin.py

Optional: SEED_ADMIN_FIRST_NAME, SEED_ADMIN_LAST_NAME
"""

import asyncio
import os
import sys

from kinderhub.core.database import async_session_maker, close_db
from kinderhub.core.security import hash_password
from kinderhub.modules.users.models import StaffRole
from kinderhub.modules.users.repository import StaffRepository

MIN_PASSWORD_LENGTH = 8


async def seed_admin(email: str, password: str, first_name: str, last_name: str) -> None:
    """Create the admin account if it doesn't exist."""
    async with async_session_maker() as db:
        existing = await StaffRepository.get_by_email(db, email, StaffRole.ADMIN)
        if existing:
            print(f"Admin already exists: {email}")
            print(f"  ID: {existing.id}")
            return

        admin = await StaffRepository.create(
            db,
            email=email,
            password_hash=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            role=StaffRole.ADMIN,
        )
        await db.commit()

        print("Admin created successfully!")
        print(f"  Email: {admin.email}")
        print(f"  Name: {admin.full_name}")
        print(f"  ID: {admin.id}")

    await close_db()


def main() -> int:
    email = os.getenv("SEED_ADMIN_EMAIL")
    password = os.getenv("SEED_ADMIN_PASSWORD")
    if not email or not password:
        print("SEED_ADMIN_EMAIL and SEED_ADMIN_PASSWORD must be set")
        return 1
    if len(password) < MIN_PASSWORD_LENGTH:
        print(f"SEED_ADMIN_PASSWORD must be at least {MIN_PASSWORD_LENGTH} characters")
        return 1

    asyncio.run(
        seed_admin(
            email=email,
            password=password,
            first_name=os.getenv("SEED_ADMIN_FIRST_NAME", "KinderHub"),
            last_name=os.getenv("SEED_ADMIN_LAST_NAME", "Admin"),
        )
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
