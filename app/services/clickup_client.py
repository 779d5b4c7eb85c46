"""
@description ClickUp REST API 异步封装
@responsibility 读取列表、自定义字段、任务、评论，下载附件；所有请求经过共享限流器和指数退避
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import httpx
from loguru import logger

from app.core.exceptions import (
    ApiError,
    AuthenticationError,
    RateLimitError,
    ServerError,
)
from app.utils.rate_limiter import ExponentialBackoff, RateLimiter

DEFAULT_BASE_URL = "https://api.clickup.com/api/v2"
DEFAULT_RETRY_AFTER = 60.0
RATE_LIMIT_WARNING_THRESHOLD = 10


class ClickUpClient:
    """ClickUp 客户端（每个令牌一个实例，限流器进程内共享）"""

    RETRYABLE_ERRORS = ["TransportError", "RateLimitError", "ServerError"]

    def __init__(
        self,
        access_token: str,
        rate_limiter: RateLimiter,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        max_attempts: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._rate_limiter = rate_limiter
        self._max_attempts = max_attempts
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": access_token},
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
        )

    async def __aenter__(self) -> "ClickUpClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _check_response(self, response: httpx.Response) -> None:
        remaining = response.headers.get("x-ratelimit-remaining")
        if remaining is not None and remaining.isdigit():
            if int(remaining) < RATE_LIMIT_WARNING_THRESHOLD:
                logger.warning(f"ClickUp 配额预警: 剩余 {remaining} 次请求")

        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError(
                f"ClickUp 认证失败 (HTTP {status})", service="clickup"
            )
        if status == 429:
            retry_after = response.headers.get("retry-after")
            wait = float(retry_after) if retry_after else DEFAULT_RETRY_AFTER
            logger.warning(f"ClickUp 触发限流，{wait} 秒后重试")
            raise RateLimitError(
                "ClickUp 触发限流", retry_after=wait, status_code=status
            )
        if status >= 500:
            raise ServerError(f"ClickUp 服务错误 (HTTP {status})", status_code=status)
        if status >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            raise ApiError(
                f"ClickUp 请求失败 (HTTP {status}): {body.get('err', response.text)}",
                status_code=status,
                code=body.get("ECODE"),
            )

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """执行请求：等待配额 -> 发送 -> 检查响应，失败按指数退避重试"""

        async def send() -> httpx.Response:
            await self._rate_limiter.acquire()
            logger.debug(f"ClickUp {method} {url}")
            response = await self._client.request(method, url, **kwargs)
            self._check_response(response)
            return response

        backoff = ExponentialBackoff(
            self._max_attempts,
            self._retry_base_delay,
            self._retry_max_delay,
            sleep=self._sleep,
        )
        return await backoff.execute(send, self.RETRYABLE_ERRORS)

    async def _get_json(self, url: str, params: Optional[dict] = None) -> Any:
        response = await self._request("GET", url, params=params)
        return response.json()

    async def get_authorized_user(self) -> dict:
        data = await self._get_json("/user")
        return data.get("user", {})

    async def verify_token(self) -> bool:
        """验证令牌有效性"""
        try:
            user = await self.get_authorized_user()
            return bool(user.get("id"))
        except Exception as e:
            logger.error(f"验证 ClickUp 令牌失败: {e}")
            return False

    async def get_list(self, list_id: str) -> dict:
        """获取列表元数据"""
        return await self._get_json(f"/list/{list_id}")

    async def get_custom_fields(self, list_id: str) -> list[dict]:
        """获取列表可用的自定义字段定义"""
        data = await self._get_json(f"/list/{list_id}/field")
        return data.get("fields") or []

    async def get_list_tasks(
        self,
        list_id: str,
        include_closed: bool = True,
        include_subtasks: bool = True,
        order_by: str = "created",
    ) -> list[dict]:
        """获取列表下全部任务（逐页读取直到 last_page）"""
        tasks: list[dict] = []
        page = 0
        while True:
            data = await self._get_json(
                f"/list/{list_id}/task",
                params={
                    "archived": False,
                    "include_closed": include_closed,
                    "subtasks": include_subtasks,
                    "page": page,
                    "order_by": order_by,
                    "reverse": False,
                    "include_markdown_description": True,
                },
            )
            page_tasks = data.get("tasks") or []
            tasks.extend(page_tasks)

            if not page_tasks or data.get("last_page", True):
                break
            page += 1

        logger.debug(f"列表 {list_id} 共获取 {len(tasks)} 个任务（{page + 1} 页）")
        return tasks

    async def get_tasks_with_attachments(
        self, list_id: str, include_subtasks: bool = True
    ) -> list[dict]:
        """获取带附件的任务"""
        tasks = await self.get_list_tasks(
            list_id, include_closed=True, include_subtasks=include_subtasks
        )
        return [task for task in tasks if task.get("attachments")]

    async def get_task(self, task_id: str, include_subtasks: bool = True) -> dict:
        """获取单个任务完整详情（含附件）"""
        return await self._get_json(
            f"/task/{task_id}",
            params={
                "include_subtasks": include_subtasks,
                "include_markdown_description": True,
            },
        )

    async def get_task_comments(self, task_id: str) -> list[dict]:
        data = await self._get_json(f"/task/{task_id}/comment")
        return data.get("comments") or []

    async def download_attachment(self, url: str) -> bytes:
        """下载附件原始字节"""
        response = await self._request("GET", url)
        return response.content

    def get_rate_limit_status(self) -> dict:
        return {"remaining": self._rate_limiter.get_remaining_quota()}
