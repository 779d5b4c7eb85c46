"""
@description 列表复制任务记录模型
@responsibility 记录 ClickUp 列表复制为 monday 看板的阶段、进度和错误
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text

from app.core.database import Base


class ListReplication(Base):
    __tablename__ = "list_replications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(255), index=True)
    clickup_list_id = Column(String(64), nullable=False)
    clickup_list_name = Column(String(512), nullable=True)
    # 看板创建成功后立即写入，后续失败也保留（不回滚）
    monday_board_id = Column(String(64), nullable=True)
    monday_board_name = Column(String(512), nullable=True)
    # mapping / creating / migrating / completed / failed / cancelled
    status = Column(String(32), default="mapping")
    total_tasks = Column(Integer, default=0, nullable=False)
    migrated_tasks = Column(Integer, default=0, nullable=False)
    # full / structure_only / data_only
    replication_mode = Column(String(32), default="full")
    options = Column(JSON, default=dict)
    error_message = Column(Text, nullable=True)
    error_log = Column(JSON, default=list)
    cancel_requested = Column(Boolean, default=False, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
