"""
SQLAlchemy engine and session factory.

Everything in this service is async (FastAPI handlers, the synchronizer,
the poller process), so there is a single asyncpg-backed engine. Tests build
their own engine against sqlite+aiosqlite and hand the session in directly.
"""

from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from config.settings import settings


class Base(DeclarativeBase):
    """Base class for all ORM models. SQLAlchemy uses this to track table metadata."""
    pass


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp; every stored timestamp comes from here."""
    return datetime.now(timezone.utc)


async_engine = create_async_engine(settings.database_url, echo=False)
AsyncSessionLocal = async_sessionmaker(async_engine, expire_on_commit=False)
