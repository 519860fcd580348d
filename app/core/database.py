from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import settings

# One engine per process; the sandbox runner borrows connections from the same pool
engine = create_async_engine(
    settings.DATABASE_URL, echo=settings.DB_ECHO, pool_pre_ping=True
)

# expire_on_commit=False keeps ORM objects readable after the session commits
AsyncSessionLocal = async_sessionmaker(
    bind=engine, class_=AsyncSession, expire_on_commit=False
)


# Request-scoped session for routes (auth lookups, ORM reads)
async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


# Every table in app.core.models registers itself on this metadata
class Base(DeclarativeBase):
    pass


async def create_tables(bind: AsyncEngine = engine) -> None:
    """Create any missing tables for the pain point schema."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
