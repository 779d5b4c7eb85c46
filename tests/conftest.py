"""
@description 测试公共夹具
@responsibility 提供独立的 SQLite 数据库、任务存储和可控时钟
"""

from contextlib import asynccontextmanager

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from app.core.database import init_db
from app.services.job_store import JobStore


class FakeClock:
    """手动推进的时钟，sleep 只推进时间不真正等待"""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(bind=engine)
    session_maker = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    @asynccontextmanager
    async def factory():
        async with session_maker() as session:
            yield session

    yield factory
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return JobStore(session_factory)
