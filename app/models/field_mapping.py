"""
@description 字段映射记录模型
@responsibility 保存复制过程中 ClickUp 自定义字段与 monday 列的对应关系
"""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String

from app.core.database import Base


class FieldMappingRecord(Base):
    __tablename__ = "field_mappings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    replication_id = Column(String(36), index=True, nullable=False)
    clickup_field_id = Column(String(64), nullable=True)
    clickup_field_name = Column(String(512), nullable=False)
    clickup_field_type = Column(String(64), nullable=False)
    monday_column_id = Column(String(128), nullable=True)
    monday_column_name = Column(String(255), nullable=True)
    monday_column_type = Column(String(64), nullable=True)
    # auto / manual / skipped
    mapping_status = Column(String(32), default="auto")
    transformation_rule = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
