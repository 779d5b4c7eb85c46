"""
@description 文件传输记录模型
@responsibility 记录每个附件传输的结果（transferred/skipped/failed）
"""

from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, Integer, String, Text

from app.core.database import Base


class FileTransfer(Base):
    __tablename__ = "file_transfers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(36), index=True, nullable=False)
    clickup_task_id = Column(String(64), nullable=False)
    monday_item_id = Column(String(64), nullable=True)
    file_name = Column(String(1024), nullable=False)
    file_size = Column(BigInteger, default=0)
    file_hash = Column(String(128), nullable=True)
    # pending / transferred / skipped / failed
    status = Column(String(32), default="pending")
    error_message = Column(Text, nullable=True)
    clickup_link = Column(String(1024), nullable=True)
    transferred_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
