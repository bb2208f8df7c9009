"""Async SQLAlchemy engine, session factory and declarative base."""
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from patronly.config import settings


def engine_options(url: str) -> dict:
    """Engine keyword arguments for ``url``. SQLite gets no pool tuning."""
    options = {"echo": settings.DATABASE_ECHO, "future": True}
    if not url.startswith("sqlite"):
        options.update(
            pool_pre_ping=True,
            pool_recycle=1800,
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
        )
    return options


engine = create_async_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))

# Services commit explicitly; objects stay usable after commit
AsyncSessionLocal = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    future=True,
)

Base = declarative_base()


async def get_db():
    """Request-scoped session. Work left uncommitted by a failed request is rolled back."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
