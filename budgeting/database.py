from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
import structlog

from budgeting.config import settings

logger = structlog.get_logger()


class Base(DeclarativeBase):
    pass


def _async_url(url: str) -> str:
    """asyncpg takes SSL through connect_args and needs the +asyncpg driver name."""
    url = url.replace("?sslmode=require", "").replace("&sslmode=require", "")
    if url.startswith("postgresql://"):
        url = "postgresql+asyncpg://" + url[len("postgresql://"):]
    return url


def _engine_options() -> dict:
    options = {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": 30,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "pool_pre_ping": True,
        "echo": settings.DEBUG,
    }
    if settings.DB_SSL_REQUIRED:
        options["connect_args"] = {"ssl": "require"}
    return options


engine: AsyncEngine = create_async_engine(_async_url(settings.DATABASE_URL), **_engine_options())

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """One session per request: committed when the handler returns, rolled back if it raises."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.info("db_session_rolled_back", error_type=type(e).__name__)
            raise


async def init_db():
    async with engine.connect() as conn:
        version = (await conn.execute(text("SHOW server_version"))).scalar()
    logger.info("db_connected", server_version=version)


async def close_db():
    await engine.dispose()
    logger.info("db_disconnected")
