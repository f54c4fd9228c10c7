import logging
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from typing import AsyncGenerator

from app.models import Base
from .config import settings


def get_database_url() -> str:
    """
    Get the async database URL.

    Accepts plain postgres URLs and rewrites them for the asyncpg driver.
    Any other async URL (e.g. sqlite+aiosqlite for local runs) is used as-is.
    """
    if not settings.DATABASE_URL:
        raise ValueError(
            "DATABASE_URL is required. Please set it in your .env file."
        )

    url = settings.DATABASE_URL
    if url.startswith("postgresql://") or url.startswith("postgres://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://").replace(
            "postgres://", "postgresql+asyncpg://"
        )
    return url


DATABASE_URL = get_database_url()


def _engine_kwargs(url: str) -> dict:
    if not url.startswith("postgresql+asyncpg://"):
        return {}
    return {
        "pool_pre_ping": True,  # Verify connections before use
        "pool_recycle": 3600 if not settings.is_local else -1,
        "pool_size": 10 if not settings.is_local else 5,
        "max_overflow": 20 if not settings.is_local else 10,
        "pool_timeout": 30,
        "connect_args": {
            "command_timeout": 30,
            "timeout": 10,
            "server_settings": {
                "application_name": "zensync-api",
            },
        },
    }


engine = create_async_engine(
    DATABASE_URL,
    echo=False,  # Disable SQLAlchemy query logging (use Python logging config instead)
    future=True,
    **_engine_kwargs(DATABASE_URL),
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_tables():
    """Create all database tables"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_database():
    """Initialize database with tables"""
    logger = logging.getLogger(__name__)

    try:
        await create_tables()
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Error creating database tables: {e}", exc_info=True)
        raise RuntimeError(f"Failed to initialize database: {e}") from e
