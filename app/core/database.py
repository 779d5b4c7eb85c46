"""
@description 异步数据库连接管理
@responsibility 提供 SQLAlchemy 异步引擎、会话管理和数据库初始化
"""

import os
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///./db/data.db")

engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
)

async_session_local = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def init_db(bind: Optional[AsyncEngine] = None):
    """
    初始化数据库，创建所有表
    """
    # 导入所有模型，确保在 Base.metadata 中注册
    from app.models.api_credential import ApiCredential
    from app.models.field_mapping import FieldMappingRecord
    from app.models.file_transfer import FileTransfer
    from app.models.list_replication import ListReplication
    from app.models.sync_job import SyncJob
    from app.models.task_mapping import TaskMapping

    if bind is None and DATABASE_URL.startswith("sqlite") and "///./" in DATABASE_URL:
        os.makedirs(os.path.dirname(DATABASE_URL.split("///", 1)[1]), exist_ok=True)

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_session():
    """
    异步会话上下文管理器
    """
    async with async_session_local() as session:
        try:
            yield session
        finally:
            await session.close()
