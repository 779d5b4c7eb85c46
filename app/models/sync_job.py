"""
@description 文件同步任务记录模型
@responsibility 记录一次文件同步的状态、进度计数和错误日志
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String

from app.core.database import Base


class SyncJob(Base):
    __tablename__ = "sync_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(255), index=True)
    replication_id = Column(String(36), nullable=True)
    clickup_list_id = Column(String(64), nullable=False)
    monday_board_id = Column(String(64), nullable=False)
    # file_sync / full_replication / update_sync
    job_type = Column(String(32), default="file_sync")
    # pending / running / completed / failed / cancelled
    status = Column(String(32), default="pending")
    total_tasks = Column(Integer, default=0, nullable=False)
    processed_tasks = Column(Integer, default=0, nullable=False)
    batch_size = Column(Integer, default=10)
    options = Column(JSON, default=dict)
    # [{timestamp, message, error?, task_id?}]，只追加
    error_log = Column(JSON, default=list)
    cancel_requested = Column(Boolean, default=False, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
