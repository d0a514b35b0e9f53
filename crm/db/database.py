"""
Database Connection
===================
Async SQLAlchemy engine built from settings (asyncpg in production)
"""

import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from crm.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

# Create engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    future=True,
)

# Session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session():
    """Get a database session"""
    async with async_session_factory() as session:
        yield session


async def init_db(bind=None):
    """Create all tables (for development only - use migrations in production)"""
    from crm.db.models import Base
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
