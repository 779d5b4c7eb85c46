"""
@description 任务映射记录模型
@responsibility 记录 ClickUp 任务与创建出的 monday item 的对应关系
"""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint

from app.core.database import Base


class TaskMapping(Base):
    __tablename__ = "task_mappings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    replication_id = Column(String(36), index=True, nullable=False)
    clickup_task_id = Column(String(64), nullable=False)
    # 写入后不再修改，重放时复用
    monday_item_id = Column(String(64), nullable=False)
    clickup_parent_id = Column(String(64), nullable=True)
    monday_parent_id = Column(String(64), nullable=True)
    # 原始任务数据，用于审计和重试
    task_data = Column(JSON, nullable=True)
    # pending / synced / updated / failed
    sync_status = Column(String(32), default="pending")
    last_synced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.now)

    __table_args__ = (
        UniqueConstraint(
            "replication_id", "clickup_task_id", name="uq_replication_task"
        ),
    )
