"""
@description monday.com GraphQL API 异步封装
@responsibility 看板、列、item、update 的查询与变更，文件上传；限流器 + complexity 预算 + 指数退避
"""

import asyncio
import json
import re
from typing import Any, Awaitable, Callable, Optional

import httpx
from loguru import logger

from app.core.exceptions import (
    ApiError,
    AuthenticationError,
    RateLimitError,
    ServerError,
)
from app.utils.rate_limiter import ComplexityBudget, ExponentialBackoff, RateLimiter

DEFAULT_API_URL = "https://api.monday.com/v2"
DEFAULT_FILE_URL = "https://api.monday.com/v2/file"
DEFAULT_RETRY_AFTER = 60.0

COMPLEXITY_FIELD = "complexity { before after query reset_in_x_seconds }"

ITEM_FIELDS = """
    id
    name
    state
    assets { id name file_size file_extension url }
    column_values { id type value text }
"""

BOARD_FIELDS = """
    id
    name
    description
    board_kind
    state
    workspace_id
    columns { id title type settings_str archived }
"""


class MondayClient:
    """monday 客户端（限流器和 complexity 预算进程内共享）"""

    RETRYABLE_ERRORS = ["TransportError", "RateLimitError", "ServerError"]

    def __init__(
        self,
        api_token: str,
        rate_limiter: RateLimiter,
        complexity_budget: ComplexityBudget,
        api_url: str = DEFAULT_API_URL,
        file_url: str = DEFAULT_FILE_URL,
        api_version: str = "2024-01",
        timeout: float = 60.0,
        max_attempts: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._rate_limiter = rate_limiter
        self._complexity = complexity_budget
        self._api_url = api_url
        self._file_url = file_url
        self._max_attempts = max_attempts
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            headers={"Authorization": api_token, "API-Version": api_version},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "MondayClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ---------- 请求与响应处理 ----------

    def _raise_graphql_errors(self, payload: dict, status: int) -> None:
        messages = []
        codes = []
        for error in payload.get("errors") or []:
            messages.append(str(error.get("message", error)))
            code = (error.get("extensions") or {}).get("code")
            if code:
                codes.append(str(code))
        if payload.get("error_message"):
            messages.append(str(payload["error_message"]))
        if payload.get("error_code"):
            codes.append(str(payload["error_code"]))

        if not messages and not codes:
            return

        message = "; ".join(messages) or "未知错误"
        code = codes[0] if codes else None
        combined = f"{message} {' '.join(codes)}".lower()
        if "complexity" in combined or "rate limit" in combined:
            match = re.search(r"reset in (\d+) seconds?", combined)
            retry_after = float(match.group(1)) if match else DEFAULT_RETRY_AFTER
            logger.warning(f"monday complexity 预算耗尽，{retry_after} 秒后重试")
            raise RateLimitError(
                f"monday 限流: {message}", retry_after=retry_after, code=code
            )
        raise ApiError(f"monday 请求失败: {message}", status_code=status, code=code)

    def _check_response(self, response: httpx.Response) -> dict:
        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError(
                f"monday 认证失败 (HTTP {status})", service="monday"
            )
        if status == 429:
            retry_after = response.headers.get("retry-after")
            wait = float(retry_after) if retry_after else DEFAULT_RETRY_AFTER
            raise RateLimitError("monday 触发限流", retry_after=wait, status_code=status)
        if status >= 500:
            raise ServerError(f"monday 服务错误 (HTTP {status})", status_code=status)

        try:
            payload = response.json()
        except ValueError:
            raise ApiError(
                f"monday 返回非 JSON 响应 (HTTP {status})", status_code=status
            )

        self._raise_graphql_errors(payload, status)
        if status >= 400:
            raise ApiError(f"monday 请求失败 (HTTP {status})", status_code=status)
        return payload

    def _track_complexity(self, payload: dict) -> None:
        data = payload.get("data") or {}
        complexity = data.pop("complexity", None) or (
            payload.get("extensions") or {}
        ).get("complexity")
        if not complexity:
            return

        cost = complexity.get("query")
        if cost is None and complexity.get("before") is not None:
            cost = complexity["before"] - complexity.get("after", 0)
        self._complexity.record(cost or 0, complexity.get("reset_in_x_seconds"))

    async def _send(self, **kwargs) -> dict:
        await self._complexity.wait_if_needed()

        async def send() -> dict:
            await self._rate_limiter.acquire()
            response = await self._client.post(**kwargs)
            return self._check_response(response)

        backoff = ExponentialBackoff(
            self._max_attempts,
            self._retry_base_delay,
            self._retry_max_delay,
            sleep=self._sleep,
        )
        payload = await backoff.execute(send, self.RETRYABLE_ERRORS)
        self._track_complexity(payload)
        return payload.get("data") or {}

    async def _graphql(self, query: str, variables: Optional[dict] = None) -> dict:
        logger.debug(f"monday GraphQL: {query.split('(')[0].strip()}")
        return await self._send(
            url=self._api_url,
            json={"query": query, "variables": variables or {}},
        )

    # ---------- 账户 ----------

    async def get_me(self) -> dict:
        data = await self._graphql(f"query {{ me {{ id name email }} {COMPLEXITY_FIELD} }}")
        return data.get("me") or {}

    async def verify_token(self) -> bool:
        """验证令牌有效性"""
        try:
            me = await self.get_me()
            return bool(me.get("id"))
        except Exception as e:
            logger.error(f"验证 monday 令牌失败: {e}")
            return False

    # ---------- 看板与列 ----------

    async def get_boards(
        self, ids: Optional[list[str]] = None, limit: int = 50
    ) -> list[dict]:
        query = f"""
            query ($ids: [ID!], $limit: Int) {{
                boards(ids: $ids, limit: $limit) {{ {BOARD_FIELDS} }}
                {COMPLEXITY_FIELD}
            }}
        """
        data = await self._graphql(query, {"ids": ids, "limit": limit})
        return data.get("boards") or []

    async def get_board(self, board_id: str) -> dict:
        """获取看板（含列），不存在时抛出 ApiError"""
        boards = await self.get_boards([str(board_id)])
        if not boards:
            raise ApiError(f"看板不存在: {board_id}", status_code=404)
        return boards[0]

    async def create_board(
        self,
        name: str,
        board_kind: str = "public",
        workspace_id: Optional[str] = None,
    ) -> dict:
        query = f"""
            mutation ($name: String!, $kind: BoardKind!, $workspaceId: ID) {{
                create_board(board_name: $name, board_kind: $kind, workspace_id: $workspaceId) {{
                    id name board_kind workspace_id
                }}
                {COMPLEXITY_FIELD}
            }}
        """
        data = await self._graphql(
            query, {"name": name, "kind": board_kind, "workspaceId": workspace_id}
        )
        board = data["create_board"]
        logger.info(f"已创建 monday 看板: {board['name']} ({board['id']})")
        return board

    async def create_column(
        self,
        board_id: str,
        title: str,
        column_type: str,
        defaults: Optional[dict] = None,
    ) -> dict:
        query = f"""
            mutation ($boardId: ID!, $title: String!, $type: ColumnType!, $defaults: JSON) {{
                create_column(board_id: $boardId, title: $title, column_type: $type, defaults: $defaults) {{
                    id title type settings_str
                }}
                {COMPLEXITY_FIELD}
            }}
        """
        data = await self._graphql(
            query,
            {
                "boardId": str(board_id),
                "title": title,
                "type": column_type,
                "defaults": json.dumps(defaults) if defaults else None,
            },
        )
        return data["create_column"]

    # ---------- item ----------

    async def get_items(self, board_id: str, limit: int = 500) -> list[dict]:
        """获取看板全部 item（游标分页，含 assets）"""
        first_page = f"""
            query ($boardId: [ID!], $limit: Int) {{
                boards(ids: $boardId) {{
                    items_page(limit: $limit) {{ cursor items {{ {ITEM_FIELDS} }} }}
                }}
                {COMPLEXITY_FIELD}
            }}
        """
        next_page = f"""
            query ($cursor: String!, $limit: Int) {{
                next_items_page(cursor: $cursor, limit: $limit) {{
                    cursor items {{ {ITEM_FIELDS} }}
                }}
                {COMPLEXITY_FIELD}
            }}
        """
        data = await self._graphql(first_page, {"boardId": [str(board_id)], "limit": limit})
        boards = data.get("boards") or []
        if not boards:
            return []

        page = boards[0].get("items_page") or {}
        items = list(page.get("items") or [])
        cursor = page.get("cursor")
        while cursor:
            data = await self._graphql(next_page, {"cursor": cursor, "limit": limit})
            page = data.get("next_items_page") or {}
            items.extend(page.get("items") or [])
            cursor = page.get("cursor")

        logger.debug(f"看板 {board_id} 共获取 {len(items)} 个 item")
        return items

    async def search_items_by_name(self, board_id: str, text: str) -> list[dict]:
        """按名称包含关系（忽略大小写）搜索 item"""
        needle = text.lower()
        items = await self.get_items(board_id)
        return [item for item in items if needle in (item.get("name") or "").lower()]

    async def create_item(
        self,
        board_id: str,
        name: str,
        column_values: Optional[dict] = None,
        group_id: Optional[str] = None,
    ) -> dict:
        query = f"""
            mutation ($boardId: ID!, $name: String!, $values: JSON, $groupId: String) {{
                create_item(board_id: $boardId, item_name: $name, column_values: $values, group_id: $groupId) {{
                    id name
                }}
                {COMPLEXITY_FIELD}
            }}
        """
        data = await self._graphql(
            query,
            {
                "boardId": str(board_id),
                "name": name,
                "values": json.dumps(column_values) if column_values else None,
                "groupId": group_id,
            },
        )
        return data["create_item"]

    async def create_subitem(
        self,
        parent_item_id: str,
        name: str,
        column_values: Optional[dict] = None,
    ) -> dict:
        query = f"""
            mutation ($parentId: ID!, $name: String!, $values: JSON) {{
                create_subitem(parent_item_id: $parentId, item_name: $name, column_values: $values) {{
                    id name board {{ id }}
                }}
                {COMPLEXITY_FIELD}
            }}
        """
        data = await self._graphql(
            query,
            {
                "parentId": str(parent_item_id),
                "name": name,
                "values": json.dumps(column_values) if column_values else None,
            },
        )
        return data["create_subitem"]

    async def change_column_value(
        self, board_id: str, item_id: str, column_id: str, value: Any
    ) -> dict:
        query = f"""
            mutation ($boardId: ID!, $itemId: ID, $columnId: String!, $value: JSON!) {{
                change_column_value(board_id: $boardId, item_id: $itemId, column_id: $columnId, value: $value) {{
                    id
                }}
                {COMPLEXITY_FIELD}
            }}
        """
        data = await self._graphql(
            query,
            {
                "boardId": str(board_id),
                "itemId": str(item_id),
                "columnId": column_id,
                "value": json.dumps(value),
            },
        )
        return data["change_column_value"]

    async def create_update(self, item_id: str, body: str) -> dict:
        """在 item 下发布一条 update（评论）"""
        query = f"""
            mutation ($itemId: ID!, $body: String!) {{
                create_update(item_id: $itemId, body: $body) {{ id body created_at }}
                {COMPLEXITY_FIELD}
            }}
        """
        data = await self._graphql(query, {"itemId": str(item_id), "body": body})
        return data["create_update"]

    async def add_file_to_column(
        self, item_id: str, column_id: str, content: bytes, file_name: str
    ) -> dict:
        """
        上传文件到 item 的 file 列（multipart GraphQL）

        Returns:
            新建的 asset: {id, name, url, file_extension, file_size}
        """
        query = """
            mutation ($itemId: ID!, $columnId: String!, $file: File!) {
                add_file_to_column(item_id: $itemId, column_id: $columnId, file: $file) {
                    id name url file_extension file_size
                }
            }
        """
        logger.debug(f"上传文件 {file_name} ({len(content)} 字节) 到 item {item_id}")
        data = await self._send(
            url=self._file_url,
            data={
                "query": query,
                "variables": json.dumps({"itemId": str(item_id), "columnId": column_id}),
                "map": json.dumps({"file": "variables.file"}),
            },
            files={"file": (file_name, content)},
        )
        return data["add_file_to_column"]

    def get_rate_limit_status(self) -> dict:
        return {
            "remaining": self._rate_limiter.get_remaining_quota(),
            "complexity_used": self._complexity.used,
            "complexity_remaining": self._complexity.remaining,
        }
