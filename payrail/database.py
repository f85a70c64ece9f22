"""
Database engine, session management, and base model class.

This module sets up SQLAlchemy 2.0 with async support. Key components:

  - engine: The async database engine (connection pool for production DBs)
  - AsyncSessionLocal: Factory for creating async database sessions
  - Base: Declarative base class that all ORM models inherit from
  - get_db(): FastAPI dependency that provides a session per request

There is no module-level session. Every webhook, poll and API request gets
its own session from get_db(), so concurrent notifications for the same
transaction never share ORM state; they only meet at the database, where the
reconciliation service's conditional UPDATE decides the winner.

Session lifecycle:
  The session commits on success. Domain errors (PayrailError) also commit
  before re-raising so that audit-trail records (failed initiations, refunds,
  admin audit rows) persist. Any other exception rolls back.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from payrail.config import settings
from payrail.exceptions import PayrailError


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
)

# expire_on_commit=False prevents lazy-load errors after commit
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""
    pass


async def get_db():
    """
    FastAPI dependency that provides a database session.

    Usage in a route:
        @router.get("/items")
        async def list_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except PayrailError:
            await session.commit()
            raise
        except Exception:
            await session.rollback()
            raise
