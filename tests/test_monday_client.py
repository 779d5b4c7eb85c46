"""
@description monday 客户端测试
@responsibility 使用 httpx.MockTransport 验证 GraphQL 请求、游标分页、complexity 记录、错误分类和文件上传
"""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from app.core.exceptions import ApiError, AuthenticationError, RateLimitError
from app.services.monday_client import MondayClient
from app.utils.rate_limiter import ComplexityBudget, RateLimiter

API_URL = "https://monday.test/v2"
FILE_URL = "https://monday.test/v2/file"


def make_client(handler, budget=None, sleep=None) -> MondayClient:
    return MondayClient(
        "monday_token",
        RateLimiter(100, 60),
        budget or ComplexityBudget(1_000_000),
        api_url=API_URL,
        file_url=FILE_URL,
        transport=httpx.MockTransport(handler),
        sleep=sleep or AsyncMock(),
    )


def graphql_body(request: httpx.Request) -> dict:
    return json.loads(request.content)


class TestGraphQL:
    """测试 GraphQL 请求"""

    @pytest.mark.asyncio
    async def test_headers_and_complexity(self):
        """请求带认证和版本头，响应中的 complexity 被记录并从 data 中移除"""
        budget = ComplexityBudget(1_000_000)

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Authorization"] == "monday_token"
            assert request.headers["API-Version"] == "2024-01"
            body = graphql_body(request)
            assert "create_board" in body["query"]
            assert body["variables"]["name"] == "Sprint 看板"
            assert body["variables"]["kind"] == "public"
            return httpx.Response(
                200,
                json={
                    "data": {
                        "create_board": {"id": "100", "name": "Sprint 看板"},
                        "complexity": {
                            "before": 1_000_000,
                            "after": 999_700,
                            "query": 300,
                            "reset_in_x_seconds": 40,
                        },
                    }
                },
            )

        async with make_client(handler, budget=budget) as client:
            board = await client.create_board("Sprint 看板")

        assert board == {"id": "100", "name": "Sprint 看板"}
        assert budget.used == 300

    @pytest.mark.asyncio
    async def test_create_item_serializes_column_values(self):
        """column_values 以 JSON 字符串传递"""

        def handler(request: httpx.Request) -> httpx.Response:
            variables = graphql_body(request)["variables"]
            assert variables["boardId"] == "100"
            assert json.loads(variables["values"]) == {"status": {"label": "Done"}}
            return httpx.Response(200, json={"data": {"create_item": {"id": "9", "name": "A"}}})

        async with make_client(handler) as client:
            item = await client.create_item(100, "A", {"status": {"label": "Done"}})

        assert item["id"] == "9"

    @pytest.mark.asyncio
    async def test_get_items_follows_cursor(self):
        """items_page 之后按游标读取 next_items_page"""
        queries = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = graphql_body(request)
            queries.append(body)
            if "next_items_page" in body["query"]:
                cursor = body["variables"]["cursor"]
                if cursor == "c1":
                    page = {"cursor": "c2", "items": [{"id": "2", "name": "B"}]}
                else:
                    page = {"cursor": None, "items": [{"id": "3", "name": "C"}]}
                return httpx.Response(200, json={"data": {"next_items_page": page}})
            return httpx.Response(
                200,
                json={
                    "data": {
                        "boards": [
                            {
                                "items_page": {
                                    "cursor": "c1",
                                    "items": [{"id": "1", "name": "A"}],
                                }
                            }
                        ]
                    }
                },
            )

        async with make_client(handler) as client:
            items = await client.get_items("100")

        assert [item["id"] for item in items] == ["1", "2", "3"]
        assert len(queries) == 3

    @pytest.mark.asyncio
    async def test_search_items_by_name(self):
        def handler(request: httpx.Request) -> httpx.Response:
            items = [{"id": "1", "name": "Design Review"}, {"id": "2", "name": "Deploy"}]
            return httpx.Response(
                200,
                json={"data": {"boards": [{"items_page": {"cursor": None, "items": items}}]}},
            )

        async with make_client(handler) as client:
            items = await client.search_items_by_name("100", "review")

        assert [item["id"] for item in items] == ["1"]

    @pytest.mark.asyncio
    async def test_get_board_missing(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": {"boards": []}})

        async with make_client(handler) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.get_board("404")

        assert exc_info.value.status_code == 404


class TestErrors:
    """测试错误分类"""

    @pytest.mark.asyncio
    async def test_graphql_error_not_retried(self):
        """普通 GraphQL 错误（HTTP 200）转换为 ApiError，不重试"""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(
                200,
                json={
                    "errors": [
                        {
                            "message": "Column not found",
                            "extensions": {"code": "InvalidColumnIdException"},
                        }
                    ]
                },
            )

        async with make_client(handler) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.change_column_value("1", "2", "link", {"url": "x"})

        assert exc_info.value.code == "InvalidColumnIdException"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_complexity_error_retried(self):
        """complexity 预算耗尽时按提示时间等待后重试"""
        sleep = AsyncMock()
        responses = [
            httpx.Response(
                200,
                json={
                    "error_code": "ComplexityException",
                    "error_message": "Complexity budget exhausted, reset in 12 seconds",
                },
            ),
            httpx.Response(200, json={"data": {"me": {"id": "7", "name": "dev"}}}),
        ]

        async with make_client(lambda request: responses.pop(0), sleep=sleep) as client:
            me = await client.get_me()

        assert me["id"] == "7"
        sleep.assert_awaited_once_with(12.0)

    @pytest.mark.asyncio
    async def test_auth_error(self):
        async with make_client(lambda request: httpx.Response(401)) as client:
            with pytest.raises(AuthenticationError) as exc_info:
                await client.get_me()
            assert await client.verify_token() is False

        assert exc_info.value.service == "monday"

    def test_raise_graphql_errors_rate_limit(self):
        client = make_client(lambda request: httpx.Response(200))
        with pytest.raises(RateLimitError) as exc_info:
            client._raise_graphql_errors(
                {"errors": [{"message": "Rate limit exceeded"}]}, 200
            )
        assert exc_info.value.retry_after == 60.0


class TestFileUpload:
    """测试文件上传"""

    @pytest.mark.asyncio
    async def test_add_file_to_column_multipart(self):
        """文件上传走 file 端点，使用 multipart 表单"""

        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == FILE_URL
            assert request.headers["content-type"].startswith("multipart/form-data")
            body = request.content
            assert b"add_file_to_column" in body
            assert b'"variables.file"' in body
            assert b'filename="report.pdf"' in body
            assert b"%PDF-data" in body
            return httpx.Response(
                200,
                json={
                    "data": {
                        "add_file_to_column": {
                            "id": "asset-1",
                            "name": "report.pdf",
                            "file_size": 9,
                        }
                    }
                },
            )

        async with make_client(handler) as client:
            asset = await client.add_file_to_column("9", "files", b"%PDF-data", "report.pdf")

        assert asset["id"] == "asset-1"
        status = client.get_rate_limit_status()
        assert status["remaining"] == 99
