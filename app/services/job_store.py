"""
@description 任务记录存储
@responsibility 同步任务、复制任务、字段映射、任务映射、文件传输记录的读写；计数原子递增、错误日志只追加
"""

import asyncio
from datetime import datetime
from typing import Any, Optional

from loguru import logger
from sqlalchemy import func, select, update

from app.core.database import get_session
from app.models.field_mapping import FieldMappingRecord
from app.models.file_transfer import FileTransfer
from app.models.list_replication import ListReplication
from app.models.sync_job import SyncJob
from app.models.task_mapping import TaskMapping

KIND_FILE_SYNC = "file_sync"
KIND_LIST_REPLICATION = "list_replication"

TRANSFER_STATUSES = ("pending", "transferred", "skipped", "failed")


def _error_entry(
    message: str, error: Any = None, task_id: Optional[str] = None
) -> dict:
    entry = {"timestamp": datetime.now().isoformat(), "message": message}
    if error is not None:
        entry["error"] = str(error)
    if task_id is not None:
        entry["task_id"] = task_id
    return entry


class JobStore:
    """基于 SQLAlchemy 异步会话的任务存储"""

    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory
        self._error_lock = asyncio.Lock()

    # ---------- 同步任务 ----------

    async def create_sync_job(
        self,
        user_id: str,
        clickup_list_id: str,
        monday_board_id: str,
        options: Optional[dict] = None,
        batch_size: int = 10,
        job_type: str = "file_sync",
        replication_id: Optional[str] = None,
    ) -> str:
        async with self._session_factory() as session:
            job = SyncJob(
                user_id=user_id,
                clickup_list_id=clickup_list_id,
                monday_board_id=monday_board_id,
                job_type=job_type,
                status="pending",
                batch_size=batch_size,
                options=options or {},
                error_log=[],
                replication_id=replication_id,
            )
            session.add(job)
            await session.commit()
            logger.debug(f"已创建同步任务记录: {job.id}")
            return job.id

    async def get_sync_job(self, job_id: str) -> Optional[SyncJob]:
        async with self._session_factory() as session:
            return await session.get(SyncJob, job_id)

    async def update_sync_job(self, job_id: str, **values) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(SyncJob).where(SyncJob.id == job_id).values(**values)
            )
            await session.commit()

    async def increment_processed(self, job_id: str, amount: int = 1) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(SyncJob)
                .where(SyncJob.id == job_id)
                .values(processed_tasks=SyncJob.processed_tasks + amount)
            )
            await session.commit()

    # ---------- 复制任务 ----------

    async def create_replication(
        self,
        user_id: str,
        clickup_list_id: str,
        monday_board_name: str,
        replication_mode: str = "full",
        options: Optional[dict] = None,
    ) -> str:
        async with self._session_factory() as session:
            replication = ListReplication(
                user_id=user_id,
                clickup_list_id=clickup_list_id,
                monday_board_name=monday_board_name,
                replication_mode=replication_mode,
                status="mapping",
                options=options or {},
                error_log=[],
            )
            session.add(replication)
            await session.commit()
            logger.debug(f"已创建复制任务记录: {replication.id}")
            return replication.id

    async def get_replication(self, replication_id: str) -> Optional[ListReplication]:
        async with self._session_factory() as session:
            return await session.get(ListReplication, replication_id)

    async def update_replication(self, replication_id: str, **values) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(ListReplication)
                .where(ListReplication.id == replication_id)
                .values(**values)
            )
            await session.commit()

    async def increment_migrated(self, replication_id: str, amount: int = 1) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(ListReplication)
                .where(ListReplication.id == replication_id)
                .values(migrated_tasks=ListReplication.migrated_tasks + amount)
            )
            await session.commit()

    # ---------- 通用 ----------

    async def get_job_kind(self, job_id: str) -> Optional[str]:
        """判断 ID 属于哪类任务，不存在返回 None"""
        if await self.get_sync_job(job_id) is not None:
            return KIND_FILE_SYNC
        if await self.get_replication(job_id) is not None:
            return KIND_LIST_REPLICATION
        return None

    def _model_for(self, kind: str):
        return ListReplication if kind == KIND_LIST_REPLICATION else SyncJob

    async def append_error(
        self,
        job_id: str,
        message: str,
        error: Any = None,
        task_id: Optional[str] = None,
        kind: str = KIND_FILE_SYNC,
    ) -> None:
        """向错误日志追加一条记录（读-改-写在锁内完成）"""
        model = self._model_for(kind)
        async with self._error_lock:
            async with self._session_factory() as session:
                record = await session.get(model, job_id)
                if record is None:
                    logger.warning(f"追加错误日志时任务不存在: {job_id}")
                    return
                record.error_log = [
                    *(record.error_log or []),
                    _error_entry(message, error, task_id),
                ]
                await session.commit()

    async def request_cancel(self, job_id: str) -> Optional[str]:
        """标记取消请求，返回任务类型；任务不存在返回 None"""
        kind = await self.get_job_kind(job_id)
        if kind is None:
            return None
        model = self._model_for(kind)
        async with self._session_factory() as session:
            await session.execute(
                update(model).where(model.id == job_id).values(cancel_requested=True)
            )
            await session.commit()
        logger.info(f"任务 {job_id} 已请求取消")
        return kind

    async def is_cancel_requested(self, job_id: str, kind: str = KIND_FILE_SYNC) -> bool:
        model = self._model_for(kind)
        async with self._session_factory() as session:
            result = await session.execute(
                select(model.cancel_requested).where(model.id == job_id)
            )
            return bool(result.scalar_one_or_none())

    # ---------- 文件传输记录 ----------

    async def record_file_transfer(
        self,
        job_id: str,
        clickup_task_id: str,
        file_name: str,
        status: str,
        monday_item_id: Optional[str] = None,
        file_size: int = 0,
        error_message: Optional[str] = None,
        file_hash: Optional[str] = None,
        clickup_link: Optional[str] = None,
    ) -> None:
        async with self._session_factory() as session:
            session.add(
                FileTransfer(
                    job_id=job_id,
                    clickup_task_id=clickup_task_id,
                    monday_item_id=monday_item_id,
                    file_name=file_name,
                    file_size=file_size or 0,
                    file_hash=file_hash,
                    status=status,
                    error_message=error_message,
                    clickup_link=clickup_link,
                    transferred_at=datetime.now() if status == "transferred" else None,
                )
            )
            await session.commit()

    async def get_transfer_stats(self, job_id: str) -> dict:
        """按状态统计文件传输记录"""
        async with self._session_factory() as session:
            result = await session.execute(
                select(FileTransfer.status, func.count(FileTransfer.id))
                .where(FileTransfer.job_id == job_id)
                .group_by(FileTransfer.status)
            )
            counts = {status: count for status, count in result.all()}

        stats = {status: counts.get(status, 0) for status in TRANSFER_STATUSES}
        stats["total"] = sum(counts.values())
        return stats

    async def list_transfers(
        self, job_id: str, status: Optional[str] = None, limit: int = 100
    ) -> list[FileTransfer]:
        async with self._session_factory() as session:
            query = select(FileTransfer).where(FileTransfer.job_id == job_id)
            if status:
                query = query.where(FileTransfer.status == status)
            result = await session.execute(
                query.order_by(FileTransfer.id).limit(limit)
            )
            return list(result.scalars().all())

    # ---------- 字段映射 / 任务映射 ----------

    async def save_field_mapping(
        self,
        replication_id: str,
        field: dict,
        column: Optional[dict],
        mapping_status: str = "auto",
        transformation_rule: Optional[dict] = None,
    ) -> None:
        async with self._session_factory() as session:
            session.add(
                FieldMappingRecord(
                    replication_id=replication_id,
                    clickup_field_id=field.get("id"),
                    clickup_field_name=field.get("name"),
                    clickup_field_type=field.get("type"),
                    monday_column_id=(column or {}).get("id"),
                    monday_column_name=(column or {}).get("title"),
                    monday_column_type=(column or {}).get("type"),
                    mapping_status=mapping_status,
                    transformation_rule=transformation_rule,
                )
            )
            await session.commit()

    async def list_field_mappings(self, replication_id: str) -> list[FieldMappingRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(FieldMappingRecord)
                .where(FieldMappingRecord.replication_id == replication_id)
                .order_by(FieldMappingRecord.id)
            )
            return list(result.scalars().all())

    async def get_task_mapping(
        self, replication_id: str, clickup_task_id: str
    ) -> Optional[TaskMapping]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TaskMapping).where(
                    TaskMapping.replication_id == replication_id,
                    TaskMapping.clickup_task_id == clickup_task_id,
                )
            )
            return result.scalar_one_or_none()

    async def save_task_mapping(
        self,
        replication_id: str,
        clickup_task_id: str,
        monday_item_id: str,
        task_data: Optional[dict] = None,
        clickup_parent_id: Optional[str] = None,
        monday_parent_id: Optional[str] = None,
        sync_status: str = "synced",
    ) -> TaskMapping:
        """
        保存任务映射

        已存在映射时直接返回原记录，不会改写 monday_item_id。
        """
        existing = await self.get_task_mapping(replication_id, clickup_task_id)
        if existing is not None:
            if existing.monday_item_id != str(monday_item_id):
                logger.warning(
                    f"任务 {clickup_task_id} 已映射到 item {existing.monday_item_id}，"
                    f"忽略新的 item {monday_item_id}"
                )
            return existing

        async with self._session_factory() as session:
            mapping = TaskMapping(
                replication_id=replication_id,
                clickup_task_id=clickup_task_id,
                monday_item_id=str(monday_item_id),
                clickup_parent_id=clickup_parent_id,
                monday_parent_id=monday_parent_id,
                task_data=task_data,
                sync_status=sync_status,
                last_synced_at=datetime.now(),
            )
            session.add(mapping)
            await session.commit()
            return mapping

    async def update_task_mapping_status(
        self, replication_id: str, clickup_task_id: str, sync_status: str
    ) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(TaskMapping)
                .where(
                    TaskMapping.replication_id == replication_id,
                    TaskMapping.clickup_task_id == clickup_task_id,
                )
                .values(sync_status=sync_status, last_synced_at=datetime.now())
            )
            await session.commit()

    async def count_task_mappings(self, replication_id: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(TaskMapping.id)).where(
                    TaskMapping.replication_id == replication_id
                )
            )
            return result.scalar_one()


class JobProgressSink:
    """把批处理进度和失败写入任务记录"""

    def __init__(self, store: JobStore, job_id: str, kind: str = KIND_FILE_SYNC):
        self._store = store
        self._job_id = job_id
        self._kind = kind

    async def update_progress(self, processed: int, total: int) -> None:
        if self._kind == KIND_LIST_REPLICATION:
            await self._store.update_replication(
                self._job_id, migrated_tasks=processed, total_tasks=total
            )
        else:
            await self._store.update_sync_job(
                self._job_id, processed_tasks=processed, total_tasks=total
            )

    async def log_error(self, message: str, error: Any = None) -> None:
        await self._store.append_error(self._job_id, message, error, kind=self._kind)

    async def log_task_failure(self, task_id: str, error_message: str) -> None:
        if self._kind == KIND_FILE_SYNC:
            await self._store.record_file_transfer(
                self._job_id,
                clickup_task_id=task_id,
                file_name="N/A",
                status="failed",
                error_message=error_message,
            )
        await self._store.append_error(
            self._job_id, "任务处理失败", error_message, task_id=task_id, kind=self._kind
        )

    async def is_cancelled(self) -> bool:
        return await self._store.is_cancel_requested(self._job_id, self._kind)
