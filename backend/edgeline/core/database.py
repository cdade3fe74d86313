import logging

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from edgeline.core.config import get_settings

logger = logging.getLogger(__name__)

database_url, database_url_source = get_settings().database_url_resolution
logger.info("Database URL resolved", extra={"database_url_source": database_url_source})

engine = create_async_engine(database_url, future=True, pool_pre_ping=True)
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)
