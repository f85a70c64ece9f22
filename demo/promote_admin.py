#!/usr/bin/env python3
"""
Promote an existing user to ADMIN. Run on the server.

Admins are never self-service: sign up normally, then run

    DATABASE_URL=... python demo/promote_admin.py ops@example.com
"""
import asyncio
import os
import sys

from sqlalchemy import update
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from payrail.models.user import User, UserType


async def promote(email: str):
    engine = create_async_engine(os.environ["DATABASE_URL"])
    sf = async_sessionmaker(engine, class_=AsyncSession)
    async with sf() as s:
        r = await s.execute(
            update(User)
            .where(User.email == email)
            .values(user_type=UserType.ADMIN)
        )
        await s.commit()
        print(f"Rows updated: {r.rowcount}")
    await engine.dispose()


if __name__ == "__main__":
    if len(sys.argv) != 2:
        sys.exit("usage: promote_admin.py <email>")
    asyncio.run(promote(sys.argv[1]))
