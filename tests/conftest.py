"""
Test Suite Configuration
"""
from typing import AsyncGenerator

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.config import Settings
from src.config.settings import PosApiSettings, SyncSettings, WebhookSettings
from src.database.models import Base

from tests.helpers import NOTIFICATION_URL, WEBHOOK_SECRET


@pytest.fixture
def test_settings() -> Settings:
    """Settings pointing at a fake POS host with a known webhook key"""
    return Settings(
        pos_api=PosApiSettings(
            base_url="https://pos.test",
            access_token="test-token",
            throttle_base_seconds=0.2,
            throttle_jitter_seconds=0.1,
            backoff_base_seconds=1.0,
            backoff_jitter_seconds=1.0,
            page_size=3,
        ),
        webhook=WebhookSettings(
            signature_key=WEBHOOK_SECRET,
            notification_url=NOTIFICATION_URL,
        ),
        sync=SyncSettings(),
    )


@pytest.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite replica with savepoint support and foreign keys"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest correctly
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session"""
    async with session_factory() as session:
        yield session
        await session.rollback()


