"""
@description 后台任务管理
@responsibility 创建任务记录并以后台协程运行文件同步和列表复制，提供状态查询与取消
"""

import asyncio
from datetime import datetime
from typing import Coroutine, Optional

from loguru import logger

from app.core.config import Config
from app.schemas.api import ReplicationOptions, SyncOptions
from app.services.clickup_client import ClickUpClient
from app.services.credentials import CredentialVault
from app.services.field_mapper import generate_field_mappings
from app.services.file_sync import FileSyncEngine
from app.services.job_store import KIND_FILE_SYNC, KIND_LIST_REPLICATION, JobStore
from app.services.list_replicator import ListReplicator
from app.services.monday_client import MondayClient
from app.utils.rate_limiter import ComplexityBudget, RateLimiter

MB = 1024 * 1024


class RateGovernors:
    """进程级限流状态，每个外部服务一份，被所有任务共享"""

    def __init__(self, config: Config):
        self.clickup = RateLimiter(
            config.clickup.max_requests,
            config.clickup.window_seconds,
            config.clickup.min_interval,
        )
        self.monday = RateLimiter(
            config.monday.max_requests,
            config.monday.window_seconds,
            config.monday.min_interval,
        )
        self.monday_complexity = ComplexityBudget(config.monday.complexity_budget)

    def status(self) -> dict:
        return {
            "clickup_remaining": self.clickup.get_remaining_quota(),
            "monday_remaining": self.monday.get_remaining_quota(),
            "monday_complexity_remaining": self.monday_complexity.remaining,
        }


class JobManager:
    """后台任务管理器"""

    def __init__(
        self,
        config: Config,
        store: JobStore,
        vault: CredentialVault,
        governors: Optional[RateGovernors] = None,
    ):
        self._config = config
        self._store = store
        self._vault = vault
        self._governors = governors or RateGovernors(config)
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def governors(self) -> RateGovernors:
        return self._governors

    def running_jobs(self) -> list[str]:
        return [job_id for job_id, task in self._tasks.items() if not task.done()]

    def create_clickup_client(self, token: str) -> ClickUpClient:
        return ClickUpClient(
            token,
            self._governors.clickup,
            base_url=self._config.clickup.base_url,
            timeout=self._config.clickup.timeout,
        )

    def create_monday_client(self, token: str) -> MondayClient:
        return MondayClient(
            token,
            self._governors.monday,
            self._governors.monday_complexity,
            api_url=self._config.monday.api_url,
            file_url=self._config.monday.file_url,
            api_version=self._config.monday.api_version,
            timeout=self._config.monday.timeout,
        )

    async def _tokens(self, user_id: str) -> tuple[str, str]:
        """两个服务的令牌都必须存在，否则在创建任务前抛出 AuthenticationError"""
        clickup_token = await self._vault.require(user_id, "clickup")
        monday_token = await self._vault.require(user_id, "monday")
        return clickup_token, monday_token

    def _spawn(self, job_id: str, coro: Coroutine) -> None:
        task = asyncio.create_task(coro, name=f"job-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job_id, None))

    # ---------- 文件同步 ----------

    async def start_file_sync(
        self,
        user_id: str,
        clickup_list_id: str,
        monday_board_id: str,
        options: Optional[SyncOptions] = None,
    ) -> str:
        """创建同步任务并在后台运行，立即返回任务 ID"""
        options = options or SyncOptions()
        if options.batch_size is None:
            options = options.model_copy(update={"batch_size": self._config.sync.batch_size})
        clickup_token, monday_token = await self._tokens(user_id)

        job_id = await self._store.create_sync_job(
            user_id,
            clickup_list_id,
            monday_board_id,
            options=options.model_dump(),
            batch_size=options.batch_size,
        )
        self._spawn(
            job_id,
            self._run_file_sync(
                job_id,
                clickup_token,
                monday_token,
                clickup_list_id,
                monday_board_id,
                options,
            ),
        )
        logger.info(f"文件同步任务已启动: {job_id} ({clickup_list_id} -> {monday_board_id})")
        return job_id

    async def _run_file_sync(
        self,
        job_id: str,
        clickup_token: str,
        monday_token: str,
        clickup_list_id: str,
        monday_board_id: str,
        options: SyncOptions,
    ) -> None:
        sync_config = self._config.sync
        try:
            clickup = self.create_clickup_client(clickup_token)
            monday = self.create_monday_client(monday_token)
            async with clickup, monday:
                engine = FileSyncEngine(
                    clickup,
                    monday,
                    self._store,
                    job_id,
                    max_file_size_bytes=sync_config.max_file_size_mb * MB,
                    allowed_extensions=sync_config.allowed_extensions or None,
                    delay_between_batches=sync_config.delay_between_batches,
                    batch_size=sync_config.batch_size,
                    max_retries=sync_config.max_retries,
                    parallel=sync_config.parallel,
                    max_parallel=sync_config.max_parallel,
                )
                await engine.sync_files(clickup_list_id, monday_board_id, options)
        except asyncio.CancelledError:
            await self._mark_interrupted(job_id, KIND_FILE_SYNC)
            raise
        except Exception as e:
            logger.exception(f"文件同步任务 {job_id} 异常结束: {e}")
            await self._store.append_error(job_id, "文件同步异常结束", e)
            await self._store.update_sync_job(
                job_id, status="failed", completed_at=datetime.now()
            )

    # ---------- 列表复制 ----------

    async def start_list_replication(
        self,
        user_id: str,
        clickup_list_id: str,
        monday_board_name: str,
        options: Optional[ReplicationOptions] = None,
    ) -> str:
        """创建复制任务并在后台运行，立即返回任务 ID"""
        options = options or ReplicationOptions()
        clickup_token, monday_token = await self._tokens(user_id)

        replication_id = await self._store.create_replication(
            user_id,
            clickup_list_id,
            monday_board_name,
            replication_mode=options.mode.value,
            options=options.model_dump(mode="json"),
        )
        self._spawn(
            replication_id,
            self._run_replication(
                replication_id,
                clickup_token,
                monday_token,
                clickup_list_id,
                monday_board_name,
                options,
            ),
        )
        logger.info(
            f"列表复制任务已启动: {replication_id} ({clickup_list_id} -> {monday_board_name})"
        )
        return replication_id

    async def _run_replication(
        self,
        replication_id: str,
        clickup_token: str,
        monday_token: str,
        clickup_list_id: str,
        monday_board_name: str,
        options: ReplicationOptions,
    ) -> None:
        replication_config = self._config.replication
        try:
            clickup = self.create_clickup_client(clickup_token)
            monday = self.create_monday_client(monday_token)
            async with clickup, monday:
                replicator = ListReplicator(
                    clickup,
                    monday,
                    self._store,
                    replication_id,
                    batch_size=replication_config.batch_size,
                    max_retries=replication_config.max_retries,
                    delay_between_batches=replication_config.delay_between_batches,
                    max_file_size_bytes=self._config.sync.max_file_size_mb * MB,
                    allowed_extensions=self._config.sync.allowed_extensions or None,
                )
                await replicator.replicate(clickup_list_id, monday_board_name, options)
        except asyncio.CancelledError:
            await self._mark_interrupted(replication_id, KIND_LIST_REPLICATION)
            raise
        except Exception as e:
            # replicate() 已经把记录标记为 failed
            logger.error(f"列表复制任务 {replication_id} 失败: {e}")

    async def analyze_list(self, user_id: str, clickup_list_id: str) -> dict:
        """分析列表结构，返回任务数和建议的字段映射"""
        clickup_token = await self._vault.require(user_id, "clickup")
        async with self.create_clickup_client(clickup_token) as clickup:
            list_data = await clickup.get_list(clickup_list_id)
            fields = await clickup.get_custom_fields(clickup_list_id)
            tasks = await clickup.get_list_tasks(clickup_list_id)

        mappings = generate_field_mappings(fields)
        return {
            "list_id": clickup_list_id,
            "list_name": list_data.get("name"),
            "task_count": len(tasks),
            "custom_field_count": len(fields),
            "suggested_mappings": [
                {
                    "clickup_field": m.clickup_field,
                    "clickup_field_type": m.clickup_field_type,
                    "monday_column": m.monday_column,
                    "monday_column_type": m.monday_column_type,
                }
                for m in mappings
            ],
        }

    # ---------- 查询与控制 ----------

    async def get_job_status(self, job_id: str) -> Optional[dict]:
        """任务进度快照，任务不存在返回 None"""
        job = await self._store.get_sync_job(job_id)
        if job is not None:
            snapshot = {
                "kind": KIND_FILE_SYNC,
                "processed_tasks": job.processed_tasks,
                "clickup_list_name": None,
                "monday_board_name": None,
                "replication_mode": None,
                "error_message": None,
            }
        else:
            job = await self._store.get_replication(job_id)
            if job is None:
                return None
            snapshot = {
                "kind": KIND_LIST_REPLICATION,
                "processed_tasks": job.migrated_tasks,
                "clickup_list_name": job.clickup_list_name,
                "monday_board_name": job.monday_board_name,
                "replication_mode": job.replication_mode,
                "error_message": job.error_message,
            }

        total = job.total_tasks or 0
        snapshot.update(
            {
                "job_id": job.id,
                "status": job.status,
                "total_tasks": total,
                "progress": (
                    round(snapshot["processed_tasks"] / total * 100, 1) if total else 0.0
                ),
                "clickup_list_id": job.clickup_list_id,
                "monday_board_id": job.monday_board_id,
                "error_log": job.error_log or [],
                "cancel_requested": bool(job.cancel_requested),
                "file_stats": await self._store.get_transfer_stats(job_id),
                "started_at": job.started_at,
                "completed_at": job.completed_at,
                "created_at": job.created_at,
            }
        )
        return snapshot

    async def cancel_job(self, job_id: str) -> Optional[str]:
        """请求取消（在下一个批次开始前生效），任务不存在返回 None"""
        return await self._store.request_cancel(job_id)

    async def _mark_interrupted(self, job_id: str, kind: str) -> None:
        logger.warning(f"任务 {job_id} 因服务关闭被中断")
        values = {"status": "failed", "completed_at": datetime.now()}
        if kind == KIND_LIST_REPLICATION:
            await self._store.update_replication(
                job_id, error_message="服务关闭，任务中断", **values
            )
        else:
            await self._store.update_sync_job(job_id, **values)
        await self._store.append_error(job_id, "服务关闭，任务中断", kind=kind)

    async def wait(self, job_id: str) -> None:
        """等待后台任务结束（已结束或不存在时立即返回）"""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """取消所有运行中的任务"""
        tasks = [task for task in self._tasks.values() if not task.done()]
        if not tasks:
            return

        logger.info(f"正在停止 {len(tasks)} 个运行中的任务")
        for task in tasks:
            task.cancel()
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} 个任务未能在 {timeout} 秒内停止")
        logger.info("后台任务已停止")
