import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from edgeline.core.config import DEFAULT_FROZEN_CONFIG_PATH, Settings
from edgeline.core.frozen_config import FrozenModelConfig, load_frozen_model_config
from edgeline.models import Base
from edgeline.services.calibration import CalibrationTable

os.environ["APP_ENV"] = "testing"


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Fresh in-memory database per test.

    The whole schema is created up front; nothing is shared between tests,
    so services are free to commit.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with session_factory() as session:
            yield session
    finally:
        await engine.dispose()


@pytest.fixture
def frozen_config() -> FrozenModelConfig:
    return load_frozen_model_config(DEFAULT_FROZEN_CONFIG_PATH)


@pytest.fixture
def calibration_table(frozen_config: FrozenModelConfig) -> CalibrationTable:
    return CalibrationTable.from_config(frozen_config.calibration)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        odds_api_key="test-key",
        odds_api_retry_attempts=3,
        odds_api_retry_delay_seconds=0.5,
        odds_api_default_retry_after_seconds=60.0,
        sync_min_call_interval_seconds=0.3,
        tick_chunk_size=50,
        tick_chunk_retry_attempts=1,
        redis_url="",
    )
