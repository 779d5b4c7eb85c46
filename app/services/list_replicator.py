"""
@description 列表复制编排
@responsibility 把 ClickUp 列表复制为新的 monday 看板：建列、迁移任务、子任务、附件和评论
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

from loguru import logger

from app.schemas.api import ReplicationMode, ReplicationOptions
from app.services import duplicate_checker
from app.services.batch_processor import BatchOptions, BatchProcessor, TaskResult
from app.services.clickup_client import ClickUpClient
from app.services.field_mapper import (
    FieldMapping,
    create_column_settings,
    get_transformation_rule,
    map_description_to_update,
    map_field_type,
    sanitize_column_name,
    transform_custom_field_values,
    transform_standard_fields,
)
from app.services.file_sync import AttachmentTransferer
from app.services.job_store import KIND_LIST_REPLICATION, JobProgressSink, JobStore
from app.services.monday_client import MondayClient


@dataclass
class ReplicationResult:
    success: bool = True
    board_id: Optional[str] = None
    tasks_created: int = 0
    tasks_failed: int = 0
    subtasks_created: int = 0
    files_transferred: int = 0
    comments_migrated: int = 0
    errors: list[str] = field(default_factory=list)
    task_results: list[TaskResult] = field(default_factory=list)


@dataclass
class _TaskProgress:
    """单个顶层任务跨重试保留的进度"""

    item: dict
    done: set[str] = field(default_factory=set)


def comment_text(comment: dict) -> str:
    """ClickUp 评论纯文本；comment_text 为空时拼接富文本片段"""
    text = comment.get("comment_text") or ""
    if not text:
        text = " ".join(part.get("text", "") for part in comment.get("comment") or [])
    return text.strip()


class ListReplicator:
    """列表复制编排器"""

    def __init__(
        self,
        clickup: ClickUpClient,
        monday: MondayClient,
        store: JobStore,
        replication_id: str,
        batch_size: int = 10,
        max_retries: int = 3,
        delay_between_batches: float = 0.5,
        max_file_size_bytes: int = duplicate_checker.DEFAULT_MAX_SIZE_BYTES,
        allowed_extensions: Optional[list[str]] = None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self._clickup = clickup
        self._monday = monday
        self._store = store
        self._replication_id = replication_id
        self._batch_size = batch_size
        self._max_retries = max_retries
        self._delay_between_batches = delay_between_batches
        self._max_file_size_bytes = max_file_size_bytes
        self._allowed_extensions = allowed_extensions
        self._sleep = sleep
        self._progress: dict[str, _TaskProgress] = {}

    async def replicate(
        self,
        clickup_list_id: str,
        monday_board_name: str,
        options: Optional[ReplicationOptions] = None,
    ) -> ReplicationResult:
        """
        执行复制

        建板阶段的任何错误都会把任务标记为 failed 并重新抛出；
        已创建的看板和列不会回滚。
        """
        options = options or ReplicationOptions()
        result = ReplicationResult()
        rid = self._replication_id

        try:
            await self._store.update_replication(
                rid, status="creating", started_at=datetime.now()
            )

            list_data = await self._clickup.get_list(clickup_list_id)
            custom_fields = []
            if options.mode != ReplicationMode.DATA_ONLY:
                custom_fields = await self._clickup.get_custom_fields(clickup_list_id)
            else:
                logger.warning(f"[{rid}] data_only 模式仍会新建看板，不会复用已有看板")

            board = await self._monday.create_board(monday_board_name)
            board_id = str(board["id"])
            result.board_id = board_id
            await self._store.update_replication(
                rid,
                monday_board_id=board_id,
                monday_board_name=board.get("name", monday_board_name),
                clickup_list_name=list_data.get("name"),
            )

            mappings: list[FieldMapping] = []
            if options.mode != ReplicationMode.DATA_ONLY:
                mappings = await self._create_field_mappings(custom_fields, board_id)

            cancelled = False
            if options.mode != ReplicationMode.STRUCTURE_ONLY:
                await self._store.update_replication(rid, status="migrating")
                batch = await self._migrate_tasks(
                    clickup_list_id, board_id, mappings, options, result
                )
                result.tasks_created = batch.successful
                result.tasks_failed = batch.failed
                result.task_results = batch.results
                cancelled = batch.cancelled

            await self._store.update_replication(
                rid,
                status="cancelled" if cancelled else "completed",
                completed_at=datetime.now(),
            )
            logger.info(
                f"[{rid}] 列表复制{'已取消' if cancelled else '完成'}: "
                f"创建 {result.tasks_created} 个 item, 失败 {result.tasks_failed}, "
                f"子任务 {result.subtasks_created}, 文件 {result.files_transferred}, "
                f"评论 {result.comments_migrated}"
            )
            return result

        except Exception as e:
            logger.error(f"[{rid}] 列表复制失败: {e}")
            result.success = False
            result.errors.append(str(e))
            await self._store.update_replication(
                rid, status="failed", error_message=str(e), completed_at=datetime.now()
            )
            await self._store.append_error(
                rid, "列表复制失败", e, kind=KIND_LIST_REPLICATION
            )
            raise

    async def _create_field_mappings(
        self, custom_fields: list[dict], board_id: str
    ) -> list[FieldMapping]:
        """为每个自定义字段建列，单个字段失败只记录日志"""
        mappings = []
        for custom_field in custom_fields:
            name = custom_field.get("name", "")
            try:
                column = await self._monday.create_column(
                    board_id,
                    sanitize_column_name(name) or custom_field.get("id", "field"),
                    map_field_type(custom_field.get("type")),
                    create_column_settings(custom_field) or None,
                )
            except Exception as e:
                logger.warning(f"[{self._replication_id}] 字段 {name} 建列失败，已跳过: {e}")
                await self._store.save_field_mapping(
                    self._replication_id, custom_field, None, mapping_status="skipped"
                )
                continue

            mappings.append(
                FieldMapping(
                    clickup_field=name,
                    clickup_field_type=custom_field.get("type", ""),
                    monday_column=column["id"],
                    monday_column_type=column.get("type", ""),
                    transformation_rule=get_transformation_rule(custom_field.get("type")),
                )
            )
            await self._store.save_field_mapping(self._replication_id, custom_field, column)
            logger.debug(f"字段映射: {name} -> {column.get('title')} ({column.get('type')})")

        return mappings

    async def _migrate_tasks(
        self,
        clickup_list_id: str,
        board_id: str,
        mappings: list[FieldMapping],
        options: ReplicationOptions,
        result: ReplicationResult,
    ):
        all_tasks = await self._clickup.get_list_tasks(
            clickup_list_id, include_subtasks=options.include_subtasks
        )
        if options.include_subtasks:
            top_level = [task for task in all_tasks if not task.get("parent")]
        else:
            top_level = all_tasks
        logger.info(f"[{self._replication_id}] 待迁移任务 {len(top_level)} 个")

        await self._store.update_replication(
            self._replication_id, total_tasks=len(top_level), migrated_tasks=0
        )

        transferer = AttachmentTransferer(
            self._clickup,
            self._monday,
            self._store,
            self._replication_id,
            board_id,
            self._max_file_size_bytes,
            self._allowed_extensions,
        )

        async def migrate(task: dict) -> str:
            return await self.migrate_task(
                task, board_id, mappings, options, result, transferer, all_tasks
            )

        processor = BatchProcessor(
            self._replication_id,
            JobProgressSink(self._store, self._replication_id, KIND_LIST_REPLICATION),
            sleep=self._sleep,
        )
        batch = await processor.process_batch(
            top_level,
            self._batch_size,
            migrate,
            BatchOptions(
                max_retries=self._max_retries,
                parallel=False,
                delay_between_batches=self._delay_between_batches,
            ),
        )

        # 重试耗尽的任务：已建出的 item 映射标记为 failed
        for task_result in batch.results:
            if not task_result.success and not task_result.skipped:
                await self._store.update_task_mapping_status(
                    self._replication_id, task_result.task_id, "failed"
                )
        return batch

    def _build_column_values(
        self, task: dict, mappings: list[FieldMapping], options: ReplicationOptions
    ) -> tuple[str, dict]:
        name, column_values = transform_standard_fields(
            task, options.preserve_assignees, options.preserve_dates
        )
        column_values.update(transform_custom_field_values(task, mappings))
        return name, column_values

    async def migrate_task(
        self,
        task: dict,
        board_id: str,
        mappings: list[FieldMapping],
        options: ReplicationOptions,
        result: ReplicationResult,
        transferer: AttachmentTransferer,
        all_tasks: list[dict],
    ) -> str:
        """
        迁移单个顶层任务，返回 monday item ID

        已有映射的任务复用原 item，不会重复创建。
        同一次复制中的重试会跳过已完成的步骤（描述、附件、评论），
        item 上已上传的文件跨重试保留并参与查重。
        映射先记为 pending，全部步骤完成后改为 synced。
        """
        rid = self._replication_id
        full_task = task
        if options.include_attachments or options.include_comments:
            full_task = await self._clickup.get_task(task["id"])

        progress = self._progress.get(task["id"])
        retrying = progress is not None
        if progress is None:
            mapping = await self._store.get_task_mapping(rid, task["id"])
            if mapping is not None:
                item_id = mapping.monday_item_id
                logger.info(f"[{rid}] 任务 {task['id']} 已有映射，复用 item {item_id}")
            else:
                name, column_values = self._build_column_values(full_task, mappings, options)
                item = await self._monday.create_item(board_id, name, column_values)
                item_id = str(item["id"])
                await self._store.save_task_mapping(
                    rid,
                    task["id"],
                    item_id,
                    task_data=full_task,
                    clickup_parent_id=task.get("parent"),
                    sync_status="pending",
                )
                logger.info(f"[{rid}] 已创建 item: {name} ({item_id})")
            progress = _TaskProgress(item={"id": item_id, "assets": []})
            self._progress[task["id"]] = progress
        else:
            item_id = progress.item["id"]
            logger.info(f"[{rid}] 重试任务 {task['id']}，已完成步骤: {sorted(progress.done)}")

        if options.include_comments and "description" not in progress.done:
            description = full_task.get("markdown_description") or full_task.get(
                "description"
            )
            update_text = map_description_to_update(description)
            if update_text:
                await self._monday.create_update(item_id, update_text)
            progress.done.add("description")

        if options.include_attachments and "attachments" not in progress.done:
            for attachment in full_task.get("attachments") or []:
                status = await transferer.transfer(
                    full_task, attachment, progress.item, skip_duplicates=retrying
                )
                if status == "transferred":
                    result.files_transferred += 1
            progress.done.add("attachments")

        if options.include_comments and "comments" not in progress.done:
            result.comments_migrated += await self._migrate_comments(task["id"], item_id)
            progress.done.add("comments")

        if options.include_subtasks and not task.get("parent"):
            for subtask in all_tasks:
                if subtask.get("parent") == task["id"]:
                    await self._migrate_subtask(subtask, item_id, mappings, options, result)

        await self._store.update_task_mapping_status(rid, task["id"], "synced")
        return item_id

    async def _migrate_subtask(
        self,
        subtask: dict,
        parent_item_id: str,
        mappings: list[FieldMapping],
        options: ReplicationOptions,
        result: ReplicationResult,
    ) -> None:
        rid = self._replication_id
        if await self._store.get_task_mapping(rid, subtask["id"]) is not None:
            logger.debug(f"[{rid}] 子任务 {subtask['id']} 已迁移，跳过")
            return

        name, column_values = self._build_column_values(subtask, mappings, options)
        try:
            subitem = await self._monday.create_subitem(parent_item_id, name, column_values)
        except Exception as e:
            logger.error(f"[{rid}] 创建 subitem {name} 失败: {e}")
            await self._store.append_error(
                rid, "创建 subitem 失败", e, task_id=subtask["id"], kind=KIND_LIST_REPLICATION
            )
            return

        await self._store.save_task_mapping(
            rid,
            subtask["id"],
            str(subitem["id"]),
            task_data=subtask,
            clickup_parent_id=subtask.get("parent"),
            monday_parent_id=parent_item_id,
            sync_status="synced",
        )
        result.subtasks_created += 1
        logger.info(f"[{rid}]   └ 已创建 subitem: {name}")

    async def _migrate_comments(self, task_id: str, item_id: str) -> int:
        """按顺序把评论写成 update，单条失败只记录日志"""
        migrated = 0
        for comment in await self._clickup.get_task_comments(task_id):
            text = comment_text(comment)
            if not text:
                continue
            try:
                await self._monday.create_update(item_id, text)
                migrated += 1
            except Exception as e:
                logger.warning(f"[{self._replication_id}] 迁移评论失败: {e}")
        return migrated
