"""
@description 通用批处理引擎
@responsibility 将工作项分批，按顺序或有限并发执行单项操作，逐项重试，并在每批结束后汇报进度
"""

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from app.core.exceptions import ItemSkipped, NonRetryableError

Operation = Callable[[Any], Awaitable[Any]]


@dataclass
class BatchOptions:
    max_retries: int = 3
    parallel: bool = False
    max_parallel: int = 5
    # 秒
    delay_between_batches: float = 0.65
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    on_progress: Optional[Callable[[int, int], Any]] = None
    on_error: Optional[Callable[[Exception, Any], Any]] = None


@dataclass
class TaskResult:
    task_id: str
    task_name: Optional[str] = None
    success: bool = False
    skipped: bool = False
    error: Optional[str] = None
    data: Any = None
    retry_count: int = 0
    duration: float = 0.0


@dataclass
class BatchResult:
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    results: list[TaskResult] = field(default_factory=list)
    duration: float = 0.0
    cancelled: bool = False


def create_batches(items: list, size: int) -> list[list]:
    """
    按 size 切分为有序批次

    size 为 0 或不小于总数时返回单个批次。

    Examples:
        >>> create_batches([1, 2, 3, 4, 5], 2)
        [[1, 2], [3, 4], [5]]

        >>> create_batches([1, 2, 3], 0)
        [[1, 2, 3]]
    """
    if size <= 0 or size >= len(items):
        return [list(items)]
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def _identify(item: Any) -> tuple[str, Optional[str]]:
    if isinstance(item, dict):
        return str(item.get("id", "")), item.get("name") or item.get("title")
    return str(getattr(item, "id", item)), getattr(item, "name", None)


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


class BatchProcessor:
    """
    批处理器

    sink 负责持久化进度和失败记录，需要提供异步方法:
    update_progress(processed, total), log_error(message, error),
    log_task_failure(task_id, error_message), is_cancelled()。
    """

    def __init__(
        self,
        job_id: str,
        sink=None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.job_id = job_id
        self._sink = sink
        self._sleep = sleep

    async def process_batch(
        self,
        items: list,
        batch_size: int,
        operation: Operation,
        options: Optional[BatchOptions] = None,
    ) -> BatchResult:
        options = options or BatchOptions()
        started = time.monotonic()
        batches = create_batches(items, batch_size)
        total = len(items)
        result = BatchResult()
        processed = 0

        for index, batch in enumerate(batches):
            if self._sink is not None and await self._sink.is_cancelled():
                logger.warning(
                    f"[{self.job_id}] 任务已取消，剩余 {len(batches) - index} 批不再执行"
                )
                result.cancelled = True
                break

            try:
                if options.parallel:
                    batch_results = await self._process_parallel(batch, operation, options)
                else:
                    batch_results = await self._process_sequential(
                        batch, operation, options
                    )
            except Exception as e:
                logger.error(f"[{self.job_id}] 第 {index + 1} 批处理失败: {e}")
                if self._sink is not None:
                    await self._sink.log_error(f"第 {index + 1} 批处理失败", e)
                batch_results = []
                for item in batch:
                    task_id, task_name = _identify(item)
                    batch_results.append(
                        TaskResult(task_id, task_name, error=f"批次失败: {e}")
                    )

            for task_result in batch_results:
                if task_result.success:
                    result.successful += 1
                elif task_result.skipped:
                    result.skipped += 1
                else:
                    result.failed += 1
            result.results.extend(batch_results)

            processed += len(batch)
            if self._sink is not None:
                await self._sink.update_progress(processed, total)
            if options.on_progress is not None:
                await _maybe_await(options.on_progress(processed, total))

            logger.debug(
                f"[{self.job_id}] 第 {index + 1}/{len(batches)} 批完成，进度 {processed}/{total}"
            )

            if index < len(batches) - 1 and options.delay_between_batches > 0:
                await self._sleep(options.delay_between_batches)

        result.duration = time.monotonic() - started
        logger.info(
            f"[{self.job_id}] 批处理结束: 成功 {result.successful}, "
            f"失败 {result.failed}, 跳过 {result.skipped}, 耗时 {result.duration:.1f}s"
        )
        return result

    async def _process_sequential(
        self, batch: list, operation: Operation, options: BatchOptions
    ) -> list[TaskResult]:
        results = []
        for item in batch:
            results.append(await self._process_item(item, operation, options))
        return results

    async def _process_parallel(
        self, batch: list, operation: Operation, options: BatchOptions
    ) -> list[TaskResult]:
        """有限并发执行，按完成顺序返回结果"""
        queue = list(enumerate(batch))
        in_flight: dict[asyncio.Task, int] = {}
        results: list[TaskResult] = []
        limit = max(options.max_parallel, 1)

        try:
            while queue or in_flight:
                while queue and len(in_flight) < limit:
                    slot, item = queue.pop(0)
                    task = asyncio.create_task(self._process_item(item, operation, options))
                    in_flight[task] = slot

                done, _ = await asyncio.wait(
                    in_flight.keys(), return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    slot = in_flight.pop(task)
                    logger.debug(f"[{self.job_id}] 并发槽位 {slot} 完成")
                    results.append(task.result())
        finally:
            for task in in_flight:
                task.cancel()

        return results

    async def _process_item(
        self, item: Any, operation: Operation, options: BatchOptions
    ) -> TaskResult:
        """执行单项操作，失败时按指数退避重试"""
        task_id, task_name = _identify(item)
        started = time.monotonic()
        retry_count = 0
        last_error: Optional[Exception] = None

        while retry_count <= options.max_retries:
            try:
                data = await operation(item)
                return TaskResult(
                    task_id,
                    task_name,
                    success=True,
                    data=data,
                    retry_count=retry_count,
                    duration=time.monotonic() - started,
                )
            except ItemSkipped as e:
                logger.warning(f"[{self.job_id}] 跳过 {task_name or task_id}: {e}")
                return TaskResult(
                    task_id,
                    task_name,
                    skipped=True,
                    error=str(e),
                    retry_count=retry_count,
                    duration=time.monotonic() - started,
                )
            except NonRetryableError as e:
                last_error = e
                if options.on_error is not None:
                    await _maybe_await(options.on_error(e, item))
                break
            except Exception as e:
                last_error = e
                retry_count += 1
                if options.on_error is not None:
                    await _maybe_await(options.on_error(e, item))

                if retry_count <= options.max_retries:
                    delay = min(
                        options.retry_base_delay * 2**retry_count,
                        options.retry_max_delay,
                    )
                    logger.warning(
                        f"[{self.job_id}] {task_name or task_id} 第 {retry_count} 次失败，"
                        f"{delay:.1f} 秒后重试: {e}"
                    )
                    await self._sleep(delay)

        if isinstance(last_error, NonRetryableError):
            error_message = str(last_error)
        else:
            error_message = f"重试 {options.max_retries} 次后仍失败: {last_error}"
        logger.error(f"[{self.job_id}] {task_name or task_id} 处理失败: {error_message}")
        if self._sink is not None:
            await self._sink.log_task_failure(task_id, error_message)

        return TaskResult(
            task_id,
            task_name,
            error=error_message,
            retry_count=retry_count,
            duration=time.monotonic() - started,
        )
