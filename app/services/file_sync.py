"""
@description 文件同步编排
@responsibility 把 ClickUp 任务附件复制到名称匹配的 monday item 上，记录每个文件的传输结果
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

from loguru import logger

from app.core.exceptions import ItemSkipped
from app.schemas.api import SyncOptions
from app.services import duplicate_checker
from app.services.batch_processor import BatchOptions, BatchProcessor
from app.services.clickup_client import ClickUpClient
from app.services.job_store import JobProgressSink, JobStore
from app.services.monday_client import MondayClient
from app.utils.helpers import generate_file_hash

FILE_COLUMN_TITLE = "Files"
LINK_TEXT = "View in ClickUp"


@dataclass
class FileSyncResult:
    success: bool = True
    files_transferred: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    tasks_unmatched: int = 0
    errors: list[dict] = field(default_factory=list)


def find_matching_item(task_name: str, items: list[dict]) -> Optional[dict]:
    """
    按名称查找 monday item

    先做忽略大小写的精确匹配，找不到时退化为双向包含匹配。
    """
    name = (task_name or "").strip().lower()
    if not name:
        return None

    for item in items:
        if (item.get("name") or "").strip().lower() == name:
            return item

    for item in items:
        item_name = (item.get("name") or "").strip().lower()
        if item_name and (name in item_name or item_name in name):
            return item

    return None


class AttachmentTransferer:
    """
    单个附件的 校验 -> 查重 -> 下载 -> 上传 流程

    文件同步和列表复制共用，每个结果都会写入 file_transfers。
    """

    def __init__(
        self,
        clickup: ClickUpClient,
        monday: MondayClient,
        store: JobStore,
        job_id: str,
        board_id: str,
        max_file_size_bytes: int = duplicate_checker.DEFAULT_MAX_SIZE_BYTES,
        allowed_extensions: Optional[list[str]] = None,
    ):
        self._clickup = clickup
        self._monday = monday
        self._store = store
        self._job_id = job_id
        self._board_id = str(board_id)
        self._max_file_size_bytes = max_file_size_bytes
        self._allowed_extensions = allowed_extensions
        self._file_column_id: Optional[str] = None
        self._column_lock = asyncio.Lock()
        self.errors: list[dict] = []

    async def ensure_file_column(self) -> str:
        """查找看板上的 file 列，没有则创建（每个看板只查一次）"""
        async with self._column_lock:
            if self._file_column_id is not None:
                return self._file_column_id

            board = await self._monday.get_board(self._board_id)
            for column in board.get("columns") or []:
                if column.get("type") == "file":
                    self._file_column_id = column["id"]
                    break
            else:
                logger.info(f"看板 {self._board_id} 没有 file 列，正在创建")
                column = await self._monday.create_column(
                    self._board_id, FILE_COLUMN_TITLE, "file"
                )
                self._file_column_id = column["id"]

            return self._file_column_id

    async def _record(
        self,
        task: dict,
        attachment: dict,
        item_id: str,
        status: str,
        error_message: Optional[str] = None,
        file_hash: Optional[str] = None,
    ) -> None:
        await self._store.record_file_transfer(
            self._job_id,
            clickup_task_id=task["id"],
            monday_item_id=str(item_id),
            file_name=attachment.get("title") or "",
            file_size=int(attachment.get("size") or 0),
            status=status,
            error_message=error_message,
            file_hash=file_hash,
            clickup_link=task.get("url"),
        )

    async def transfer(
        self,
        task: dict,
        attachment: dict,
        item: dict,
        skip_duplicates: bool = True,
    ) -> str:
        """
        传输一个附件

        Args:
            task: ClickUp 任务
            attachment: ClickUp 附件（title, size, url）
            item: 目标 monday item，'assets' 为已有文件列表（会追加新上传的文件）
            skip_duplicates: 是否按名称+大小跳过已存在的文件

        Returns:
            'transferred' / 'skipped' / 'failed'
        """
        title = attachment.get("title") or ""
        item_id = str(item["id"])
        assets = item.setdefault("assets", [])

        reason = duplicate_checker.validate_file(
            attachment, self._max_file_size_bytes, self._allowed_extensions
        )
        if reason:
            logger.warning(f"跳过文件 {title}: {reason}")
            await self._record(task, attachment, item_id, "skipped", reason)
            return "skipped"

        if skip_duplicates:
            check = duplicate_checker.check(attachment, assets)
            if check.is_duplicate:
                logger.info(f"跳过重复文件 {title} ({check.reason})")
                await self._record(task, attachment, item_id, "skipped", check.reason)
                return "skipped"

        try:
            content = await self._clickup.download_attachment(attachment["url"])
            column_id = await self.ensure_file_column()
            asset = await self._monday.add_file_to_column(item_id, column_id, content, title)
        except Exception as e:
            logger.error(f"传输文件 {title} 失败: {e}")
            await self._record(task, attachment, item_id, "failed", str(e))
            self.errors.append(
                {
                    "task_id": task["id"],
                    "task_name": task.get("name"),
                    "file_name": title,
                    "error": str(e),
                    "timestamp": datetime.now().isoformat(),
                }
            )
            return "failed"

        assets.append(asset or {"name": title, "file_size": attachment.get("size")})
        await self._record(
            task, attachment, item_id, "transferred", file_hash=generate_file_hash(content)
        )
        logger.info(f"已传输文件 {title} -> item {item_id}")
        return "transferred"


class FileSyncEngine:
    """文件同步编排器"""

    def __init__(
        self,
        clickup: ClickUpClient,
        monday: MondayClient,
        store: JobStore,
        job_id: str,
        max_file_size_bytes: int = duplicate_checker.DEFAULT_MAX_SIZE_BYTES,
        allowed_extensions: Optional[list[str]] = None,
        delay_between_batches: float = 0.65,
        batch_size: int = 10,
        max_retries: int = 0,
        parallel: bool = False,
        max_parallel: int = 5,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self._clickup = clickup
        self._monday = monday
        self._store = store
        self._job_id = job_id
        self._max_file_size_bytes = max_file_size_bytes
        self._allowed_extensions = allowed_extensions
        self._delay_between_batches = delay_between_batches
        self._batch_size = batch_size
        self._max_retries = max_retries
        self._parallel = parallel
        self._max_parallel = max_parallel
        self._sleep = sleep

    async def _fail(
        self, result: FileSyncResult, message: str, error: Exception
    ) -> FileSyncResult:
        logger.error(f"[{self._job_id}] {message}: {error}")
        result.success = False
        result.errors.append(
            {"task_id": "N/A", "error": str(error), "timestamp": datetime.now().isoformat()}
        )
        await self._store.append_error(self._job_id, message, error)
        await self._store.update_sync_job(
            self._job_id, status="failed", completed_at=datetime.now()
        )
        return result

    async def sync_files(
        self,
        clickup_list_id: str,
        monday_board_id: str,
        options: Optional[SyncOptions] = None,
    ) -> FileSyncResult:
        options = options or SyncOptions()
        result = FileSyncResult()

        await self._store.update_sync_job(
            self._job_id, status="running", started_at=datetime.now()
        )

        if not options.include_attachments:
            logger.info(f"[{self._job_id}] 未启用附件传输，直接结束")
            await self._store.update_sync_job(
                self._job_id, status="completed", completed_at=datetime.now()
            )
            return result

        try:
            tasks = await self._clickup.get_tasks_with_attachments(
                clickup_list_id, include_subtasks=options.include_subtasks
            )
            logger.info(f"[{self._job_id}] 共 {len(tasks)} 个任务带附件")
            await self._store.update_sync_job(
                self._job_id, total_tasks=len(tasks), processed_tasks=0
            )
            items = await self._monday.get_items(monday_board_id)
        except Exception as e:
            return await self._fail(result, "获取任务或看板数据失败", e)

        transferer = AttachmentTransferer(
            self._clickup,
            self._monday,
            self._store,
            self._job_id,
            monday_board_id,
            self._max_file_size_bytes,
            self._allowed_extensions,
        )

        attempted: set[str] = set()

        async def sync_task(task: dict) -> dict:
            # 重试时已上传的文件已在 item assets 中，按名称+大小跳过
            retrying = task["id"] in attempted
            attempted.add(task["id"])
            try:
                item = find_matching_item(task.get("name", ""), items)
                if item is None:
                    result.tasks_unmatched += 1
                    raise ItemSkipped(f"没有名称匹配的 monday item: {task.get('name')}")

                counts = {"transferred": 0, "skipped": 0, "failed": 0}
                for attachment in task.get("attachments") or []:
                    status = await transferer.transfer(
                        task, attachment, item, options.skip_duplicates or retrying
                    )
                    counts[status] += 1

                result.files_transferred += counts["transferred"]
                result.files_skipped += counts["skipped"]
                result.files_failed += counts["failed"]

                if options.clickup_link_field and task.get("url"):
                    await self._add_clickup_link(
                        monday_board_id, item["id"], options.clickup_link_field, task["url"]
                    )
                return counts
            finally:
                if not retrying:
                    await self._store.increment_processed(self._job_id)

        processor = BatchProcessor(
            self._job_id, JobProgressSink(self._store, self._job_id), sleep=self._sleep
        )
        batch_size = (
            options.batch_size if options.batch_size is not None else self._batch_size
        )
        batch = await processor.process_batch(
            tasks,
            batch_size,
            sync_task,
            BatchOptions(
                max_retries=self._max_retries,
                parallel=self._parallel,
                max_parallel=self._max_parallel,
                delay_between_batches=self._delay_between_batches,
            ),
        )

        result.errors.extend(transferer.errors)
        for task_result in batch.results:
            if not task_result.success and not task_result.skipped:
                result.errors.append(
                    {
                        "task_id": task_result.task_id,
                        "task_name": task_result.task_name,
                        "error": task_result.error,
                        "timestamp": datetime.now().isoformat(),
                    }
                )
        result.success = batch.failed == 0 and result.files_failed == 0

        status = "cancelled" if batch.cancelled else "completed"
        await self._store.update_sync_job(
            self._job_id, status=status, completed_at=datetime.now()
        )
        logger.info(
            f"[{self._job_id}] 文件同步{'已取消' if batch.cancelled else '完成'}: "
            f"传输 {result.files_transferred}, 跳过 {result.files_skipped}, "
            f"失败 {result.files_failed}, 未匹配任务 {result.tasks_unmatched}"
        )
        return result

    async def _add_clickup_link(
        self, board_id: str, item_id: str, column_id: str, url: str
    ) -> None:
        """回写 ClickUp 链接，失败不影响同步结果"""
        try:
            await self._monday.change_column_value(
                board_id, item_id, column_id, {"url": url, "text": LINK_TEXT}
            )
        except Exception as e:
            logger.warning(f"回写 ClickUp 链接到 item {item_id} 失败: {e}")
