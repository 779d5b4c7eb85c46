"""
@description 速率控制与指数退避
@responsibility 滑动窗口限流、最小请求间隔、complexity 预算、失败重试
"""

import asyncio
import time
from collections import deque
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from app.core.exceptions import RetryExhaustedError


class RateLimiter:
    """
    单个外部服务的滑动窗口限流器

    进程内每个服务只有一个实例，被所有任务共享。
    acquire() 持锁完成 等待 -> 登记，并发调用按到达顺序排队，
    窗口上限和最小间隔对所有协程整体生效。
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float = 60.0,
        min_interval: float = 0.0,
        safety_buffer: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.min_interval = min_interval
        self.safety_buffer = safety_buffer
        self._clock = clock
        self._sleep = sleep
        self._requests: deque[float] = deque()
        self._last_request_time: Optional[float] = None
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._requests and now - self._requests[0] >= self.window_seconds:
            self._requests.popleft()

    def check_limit(self) -> bool:
        """窗口内是否还有余量（不阻塞）"""
        self._prune(self._clock())
        return len(self._requests) < self.max_requests

    async def wait_for_reset(self) -> None:
        """阻塞直到窗口有余量，并满足最小请求间隔"""
        while True:
            now = self._clock()
            self._prune(now)
            if len(self._requests) < self.max_requests:
                break

            oldest = self._requests[0]
            wait_time = self.window_seconds - (now - oldest) + self.safety_buffer
            logger.warning(f"达到速率上限，等待 {wait_time:.2f} 秒")
            await self._sleep(max(wait_time, 0))

        if self.min_interval and self._last_request_time is not None:
            elapsed = self._clock() - self._last_request_time
            if elapsed < self.min_interval:
                await self._sleep(self.min_interval - elapsed)

    def record_request(self) -> None:
        """记录一次实际发出的请求"""
        now = self._clock()
        self._requests.append(now)
        self._last_request_time = now

    async def acquire(self) -> None:
        """等待配额并立即登记请求"""
        async with self._lock:
            await self.wait_for_reset()
            self.record_request()

    def get_remaining_quota(self) -> int:
        self._prune(self._clock())
        return max(0, self.max_requests - len(self._requests))

    def reset(self) -> None:
        self._requests.clear()
        self._last_request_time = None


class ComplexityBudget:
    """monday complexity 点数预算（每分钟）"""

    def __init__(
        self,
        budget: int = 5_000_000,
        warn_ratio: float = 0.8,
        pause_ratio: float = 0.9,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.budget = budget
        self.warn_ratio = warn_ratio
        self.pause_ratio = pause_ratio
        self.used = 0
        self.reset_at = 0.0
        self._clock = clock
        self._sleep = sleep

    def record(self, cost: int, reset_in_seconds: Optional[float] = None) -> None:
        """记录一次响应消耗的点数"""
        now = self._clock()
        if self.reset_at and now >= self.reset_at:
            self.used = 0

        self.used += max(int(cost), 0)
        if reset_in_seconds is not None:
            self.reset_at = now + float(reset_in_seconds)

        if self.used > self.budget * self.warn_ratio:
            logger.warning(f"monday complexity 预警: {self.used}/{self.budget}")

    async def wait_if_needed(self) -> None:
        """用量超过暂停阈值时，休眠到预算重置"""
        if self.used <= self.budget * self.pause_ratio:
            return

        now = self._clock()
        if now < self.reset_at:
            wait_time = self.reset_at - now + 1.0
            logger.warning(f"monday complexity 预算即将耗尽，等待 {wait_time:.1f} 秒")
            await self._sleep(wait_time)
        self.used = 0

    @property
    def remaining(self) -> int:
        return max(0, self.budget - self.used)


def _matches_signature(error: BaseException, signatures: list[str]) -> bool:
    names = {cls.__name__ for cls in type(error).__mro__}
    code = str(getattr(error, "code", "") or "")
    message = str(error)
    for signature in signatures:
        if signature in names or signature in code or signature in message:
            return True
    return False


class ExponentialBackoff:
    """指数退避重试包装器"""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self.attempt = 0

    def get_delay(self, attempt: int) -> float:
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)

    async def execute(
        self,
        fn: Callable[[], Awaitable[Any]],
        retryable_errors: Optional[list[str]] = None,
    ) -> Any:
        """
        执行 fn，失败时按指数退避重试

        Args:
            fn: 无参异步函数
            retryable_errors: 可重试错误特征（异常类名、code 或消息片段），
                为空时所有异常都重试

        Raises:
            RetryExhaustedError: 达到最大尝试次数
        """
        self.attempt = 0

        while True:
            try:
                result = await fn()
                self.attempt = 0
                return result
            except Exception as e:
                self.attempt += 1

                if retryable_errors and not _matches_signature(e, retryable_errors):
                    raise

                if self.attempt >= self.max_attempts:
                    attempts = self.attempt
                    self.attempt = 0
                    raise RetryExhaustedError(attempts, e) from e

                delay = self.get_delay(self.attempt)
                retry_after = getattr(e, "retry_after", None)
                if retry_after:
                    delay = max(delay, float(retry_after))

                logger.warning(
                    f"第 {self.attempt} 次调用失败，{delay:.2f} 秒后重试: {e}"
                )
                await self._sleep(delay)

    def reset(self) -> None:
        self.attempt = 0
