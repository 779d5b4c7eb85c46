"""
@description 文件同步测试
@responsibility 验证名称匹配、附件传输、重复跳过、校验拒绝、链接回写和致命错误处理
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.schemas.api import SyncOptions
from app.services.clickup_client import ClickUpClient
from app.services.file_sync import FileSyncEngine, find_matching_item
from app.utils.rate_limiter import RateLimiter


def make_clickup(tasks):
    clickup = AsyncMock()
    clickup.get_tasks_with_attachments = AsyncMock(return_value=tasks)
    clickup.download_attachment = AsyncMock(return_value=b"file-bytes")
    return clickup


def make_monday(items, columns=None):
    monday = AsyncMock()
    monday.get_items = AsyncMock(return_value=items)
    monday.get_board = AsyncMock(
        return_value={"id": "B1", "columns": columns or [{"id": "files", "type": "file"}]}
    )
    monday.create_column = AsyncMock(return_value={"id": "files_new", "type": "file"})

    async def add_file(item_id, column_id, content, file_name):
        return {"id": f"asset-{file_name}", "name": file_name, "file_size": len(content)}

    monday.add_file_to_column = AsyncMock(side_effect=add_file)
    monday.change_column_value = AsyncMock(return_value={"id": "x"})
    return monday


def attachment(title, size=10, url=None):
    return {"title": title, "size": size, "url": url or f"https://files.test/{title}"}


class TestFindMatchingItem:
    """测试 item 名称匹配"""

    def test_exact_case_insensitive(self):
        items = [{"id": "1", "name": "Design Doc"}, {"id": "2", "name": "design doc v2"}]
        assert find_matching_item("  DESIGN doc ", items)["id"] == "1"

    def test_containment_fallback(self):
        items = [{"id": "1", "name": "Quarterly Budget Review"}]
        assert find_matching_item("budget", items)["id"] == "1"
        assert find_matching_item("Quarterly Budget Review - Final", items)["id"] == "1"

    def test_no_match(self):
        assert find_matching_item("Other", [{"id": "1", "name": "Design"}]) is None
        assert find_matching_item("", [{"id": "1", "name": "Design"}]) is None

    def test_empty_item_name_ignored(self):
        assert find_matching_item("task", [{"id": "1", "name": ""}]) is None


class TestSyncFiles:
    """测试文件同步流程"""

    @pytest.mark.asyncio
    async def test_transfer_and_skip_duplicate(self, store):
        """已存在的同名同大小文件被跳过，其余文件传输"""
        job_id = await store.create_sync_job("u", "L1", "B1")
        tasks = [
            {
                "id": "T1",
                "name": "Design Doc",
                "url": "https://app.clickup.com/t/T1",
                "attachments": [attachment("brief.pdf", 2048), attachment("mock.png", 10)],
            }
        ]
        items = [
            {
                "id": "I1",
                "name": "design doc",
                "assets": [{"id": "a0", "name": "brief.pdf", "file_size": 2048}],
            }
        ]
        clickup = make_clickup(tasks)
        monday = make_monday(items)

        engine = FileSyncEngine(clickup, monday, store, job_id, sleep=AsyncMock())
        result = await engine.sync_files("L1", "B1", SyncOptions())

        assert result.success is True
        assert result.files_transferred == 1
        assert result.files_skipped == 1
        assert result.files_failed == 0
        clickup.download_attachment.assert_awaited_once_with("https://files.test/mock.png")
        monday.add_file_to_column.assert_awaited_once_with(
            "I1", "files", b"file-bytes", "mock.png"
        )

        job = await store.get_sync_job(job_id)
        assert job.status == "completed"
        assert job.total_tasks == 1
        assert job.processed_tasks == 1
        assert job.started_at is not None and job.completed_at is not None

        stats = await store.get_transfer_stats(job_id)
        assert (stats["transferred"], stats["skipped"], stats["failed"]) == (1, 1, 0)
        transferred = await store.list_transfers(job_id, status="transferred")
        assert transferred[0].file_hash is not None
        assert transferred[0].clickup_link == "https://app.clickup.com/t/T1"

    @pytest.mark.asyncio
    async def test_skip_duplicates_disabled(self, store):
        job_id = await store.create_sync_job("u", "L1", "B1")
        tasks = [{"id": "T1", "name": "A", "attachments": [attachment("x.txt", 5)]}]
        items = [{"id": "I1", "name": "A", "assets": [{"name": "x.txt", "file_size": 5}]}]
        monday = make_monday(items)

        engine = FileSyncEngine(make_clickup(tasks), monday, store, job_id, sleep=AsyncMock())
        result = await engine.sync_files("L1", "B1", SyncOptions(skip_duplicates=False))

        assert result.files_transferred == 1
        assert result.files_skipped == 0

    @pytest.mark.asyncio
    async def test_same_file_twice_in_run(self, store):
        """同一次运行中上传过的文件再次出现时被识别为重复"""
        job_id = await store.create_sync_job("u", "L1", "B1")
        tasks = [
            {"id": "T1", "name": "A", "attachments": [attachment("x.txt", 10)]},
            {"id": "T2", "name": "A", "attachments": [attachment("x.txt", 10)]},
        ]
        monday = make_monday([{"id": "I1", "name": "A", "assets": []}])

        engine = FileSyncEngine(make_clickup(tasks), monday, store, job_id, sleep=AsyncMock())
        result = await engine.sync_files("L1", "B1")

        assert result.files_transferred == 1
        assert result.files_skipped == 1

    @pytest.mark.asyncio
    async def test_unmatched_task_skipped(self, store):
        """没有同名 item 的任务记为跳过，不产生传输记录"""
        job_id = await store.create_sync_job("u", "L1", "B1")
        tasks = [
            {"id": "T1", "name": "Orphan", "attachments": [attachment("a.pdf")]},
            {"id": "T2", "name": "Match", "attachments": [attachment("b.pdf")]},
        ]
        monday = make_monday([{"id": "I2", "name": "Match", "assets": []}])

        engine = FileSyncEngine(make_clickup(tasks), monday, store, job_id, sleep=AsyncMock())
        result = await engine.sync_files("L1", "B1")

        assert result.success is True
        assert result.tasks_unmatched == 1
        assert result.files_transferred == 1
        job = await store.get_sync_job(job_id)
        assert job.processed_tasks == 2
        assert (await store.get_transfer_stats(job_id))["total"] == 1

    @pytest.mark.asyncio
    async def test_validation_rejected(self, store):
        """超出大小或扩展名不允许的文件记为 skipped 并写明原因"""
        job_id = await store.create_sync_job("u", "L1", "B1")
        tasks = [
            {
                "id": "T1",
                "name": "A",
                "attachments": [attachment("big.pdf", 2048), attachment("run.exe", 10)],
            }
        ]
        monday = make_monday([{"id": "I1", "name": "A", "assets": []}])
        clickup = make_clickup(tasks)

        engine = FileSyncEngine(
            clickup,
            monday,
            store,
            job_id,
            max_file_size_bytes=1024,
            allowed_extensions=["pdf"],
            sleep=AsyncMock(),
        )
        result = await engine.sync_files("L1", "B1")

        assert result.files_skipped == 2
        clickup.download_attachment.assert_not_awaited()
        skipped = await store.list_transfers(job_id, status="skipped")
        reasons = {record.file_name: record.error_message for record in skipped}
        assert "超过上限" in reasons["big.pdf"]
        assert reasons["run.exe"] == "不允许的文件类型: exe"

    @pytest.mark.asyncio
    async def test_upload_failure_recorded(self, store):
        """单个文件失败不影响其他文件，结果 success 为 False"""
        job_id = await store.create_sync_job("u", "L1", "B1")
        tasks = [
            {
                "id": "T1",
                "name": "A",
                "attachments": [attachment("bad.pdf"), attachment("good.pdf")],
            }
        ]
        monday = make_monday([{"id": "I1", "name": "A", "assets": []}])

        async def add_file(item_id, column_id, content, file_name):
            if file_name == "bad.pdf":
                raise RuntimeError("上传超时")
            return {"id": "a1", "name": file_name, "file_size": 10}

        monday.add_file_to_column = AsyncMock(side_effect=add_file)

        engine = FileSyncEngine(make_clickup(tasks), monday, store, job_id, sleep=AsyncMock())
        result = await engine.sync_files("L1", "B1")

        assert result.success is False
        assert result.files_failed == 1
        assert result.files_transferred == 1
        assert result.errors[0]["file_name"] == "bad.pdf"
        failed = await store.list_transfers(job_id, status="failed")
        assert failed[0].error_message == "上传超时"
        assert (await store.get_sync_job(job_id)).status == "completed"

    @pytest.mark.asyncio
    async def test_creates_file_column_once(self, store):
        """看板没有 file 列时创建一次"""
        job_id = await store.create_sync_job("u", "L1", "B1")
        tasks = [
            {"id": "T1", "name": "A", "attachments": [attachment("1.pdf"), attachment("2.pdf")]}
        ]
        monday = make_monday(
            [{"id": "I1", "name": "A", "assets": []}],
            columns=[{"id": "status", "type": "status"}],
        )

        engine = FileSyncEngine(make_clickup(tasks), monday, store, job_id, sleep=AsyncMock())
        await engine.sync_files("L1", "B1")

        monday.create_column.assert_awaited_once_with("B1", "Files", "file")
        assert monday.get_board.await_count == 1
        assert [c.args[1] for c in monday.add_file_to_column.await_args_list] == [
            "files_new",
            "files_new",
        ]

    @pytest.mark.asyncio
    async def test_link_back(self, store):
        """配置链接列时回写 ClickUp 链接，失败只记录警告"""
        job_id = await store.create_sync_job("u", "L1", "B1")
        tasks = [
            {"id": "T1", "name": "A", "url": "https://app.clickup.com/t/T1", "attachments": [attachment("a.pdf")]},
            {"id": "T2", "name": "B", "url": "https://app.clickup.com/t/T2", "attachments": [attachment("b.pdf")]},
        ]
        monday = make_monday(
            [{"id": "I1", "name": "A", "assets": []}, {"id": "I2", "name": "B", "assets": []}]
        )
        monday.change_column_value = AsyncMock(
            side_effect=[{"id": "I1"}, RuntimeError("column missing")]
        )

        engine = FileSyncEngine(make_clickup(tasks), monday, store, job_id, sleep=AsyncMock())
        result = await engine.sync_files("L1", "B1", SyncOptions(clickup_link_field="link"))

        assert result.success is True
        assert result.files_transferred == 2
        monday.change_column_value.assert_any_await(
            "B1", "I1", "link", {"url": "https://app.clickup.com/t/T1", "text": "View in ClickUp"}
        )

    @pytest.mark.asyncio
    async def test_attachments_disabled(self, store):
        job_id = await store.create_sync_job("u", "L1", "B1")
        clickup = make_clickup([])

        engine = FileSyncEngine(clickup, make_monday([]), store, job_id, sleep=AsyncMock())
        result = await engine.sync_files("L1", "B1", SyncOptions(include_attachments=False))

        assert result.success is True
        clickup.get_tasks_with_attachments.assert_not_awaited()
        assert (await store.get_sync_job(job_id)).status == "completed"

    @pytest.mark.asyncio
    async def test_fetch_failure_marks_failed(self, store):
        """读取任务列表失败时任务标记为 failed"""
        job_id = await store.create_sync_job("u", "L1", "B1")
        clickup = make_clickup([])
        clickup.get_tasks_with_attachments = AsyncMock(side_effect=RuntimeError("网络错误"))

        engine = FileSyncEngine(clickup, make_monday([]), store, job_id, sleep=AsyncMock())
        result = await engine.sync_files("L1", "B1")

        assert result.success is False
        job = await store.get_sync_job(job_id)
        assert job.status == "failed"
        assert job.error_log[0]["error"] == "网络错误"

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, store):
        """已请求取消的任务不处理任何批次"""
        job_id = await store.create_sync_job("u", "L1", "B1")
        await store.request_cancel(job_id)
        tasks = [{"id": "T1", "name": "A", "attachments": [attachment("a.pdf")]}]
        monday = make_monday([{"id": "I1", "name": "A", "assets": []}])

        engine = FileSyncEngine(make_clickup(tasks), monday, store, job_id, sleep=AsyncMock())
        await engine.sync_files("L1", "B1")

        monday.add_file_to_column.assert_not_awaited()
        assert (await store.get_sync_job(job_id)).status == "cancelled"


class TestEngineSettings:
    """测试批大小、重试和并发设置"""

    @pytest.mark.asyncio
    async def test_default_batch_size_from_engine(self, store):
        """选项未指定批大小时使用引擎默认值"""
        job_id = await store.create_sync_job("u", "L1", "B1")
        tasks = [
            {"id": f"T{i}", "name": f"Task {i}", "attachments": [attachment(f"{i}.pdf")]}
            for i in range(5)
        ]
        items = [{"id": f"I{i}", "name": f"Task {i}", "assets": []} for i in range(5)]
        sleep = AsyncMock()

        engine = FileSyncEngine(
            make_clickup(tasks), make_monday(items), store, job_id, batch_size=2, sleep=sleep
        )
        result = await engine.sync_files("L1", "B1", SyncOptions())

        assert result.files_transferred == 5
        # 3 批之间间隔 2 次
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_parallel_transfers_all_tasks(self, store):
        job_id = await store.create_sync_job("u", "L1", "B1")
        tasks = [
            {"id": f"T{i}", "name": f"Task {i}", "attachments": [attachment(f"{i}.pdf")]}
            for i in range(4)
        ]
        items = [{"id": f"I{i}", "name": f"Task {i}", "assets": []} for i in range(4)]
        monday = make_monday(items)

        engine = FileSyncEngine(
            make_clickup(tasks),
            monday,
            store,
            job_id,
            parallel=True,
            max_parallel=2,
            sleep=AsyncMock(),
        )
        result = await engine.sync_files("L1", "B1")

        assert result.files_transferred == 4
        assert monday.get_board.await_count == 1
        assert (await store.get_sync_job(job_id)).processed_tasks == 4

    @pytest.mark.asyncio
    async def test_retry_does_not_reupload(self, store):
        """任务重试时已上传的文件按重复跳过，处理数只计一次"""
        job_id = await store.create_sync_job("u", "L1", "B1")
        tasks = [{"id": "T1", "name": "A", "attachments": [attachment("x.txt", 10)]}]
        monday = make_monday([{"id": "I1", "name": "A", "assets": []}])
        record = store.record_file_transfer
        failures = []

        async def flaky_record(*args, **kwargs):
            if not failures:
                failures.append(kwargs.get("file_name"))
                raise RuntimeError("database is locked")
            return await record(*args, **kwargs)

        with patch.object(store, "record_file_transfer", side_effect=flaky_record):
            engine = FileSyncEngine(
                make_clickup(tasks),
                monday,
                store,
                job_id,
                max_retries=1,
                sleep=AsyncMock(),
            )
            result = await engine.sync_files("L1", "B1", SyncOptions(skip_duplicates=False))

        assert failures == ["x.txt"]
        monday.add_file_to_column.assert_awaited_once()
        assert result.files_skipped == 1
        job = await store.get_sync_job(job_id)
        assert job.status == "completed"
        assert job.processed_tasks == 1


class TestEndToEnd:
    """经过真实 ClickUp 客户端的完整同步"""

    @pytest.mark.asyncio
    async def test_three_tasks_one_with_two_attachments(self, store):
        """3 个任务中 1 个有 2 个附件，看板有 3 个同名 item，传输 2 个文件"""
        job_id = await store.create_sync_job("u", "L1", "B1")
        source_tasks = [
            {
                "id": "T1",
                "name": "Design",
                "attachments": [
                    attachment("wireframe.png", 10, "https://files.test/wireframe.png"),
                    attachment("notes.pdf", 10, "https://files.test/notes.pdf"),
                ],
            },
            {"id": "T2", "name": "Build", "attachments": []},
            {"id": "T3", "name": "Launch"},
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "files.test":
                return httpx.Response(200, content=b"file-bytes")
            assert request.url.path == "/api/v2/list/L1/task"
            return httpx.Response(200, json={"tasks": source_tasks, "last_page": True})

        clickup = ClickUpClient(
            "pk_test_token",
            RateLimiter(100, 60),
            base_url="https://clickup.test/api/v2",
            transport=httpx.MockTransport(handler),
            sleep=AsyncMock(),
        )
        monday = make_monday(
            [
                {"id": "I1", "name": "Design", "assets": []},
                {"id": "I2", "name": "Build", "assets": []},
                {"id": "I3", "name": "Launch", "assets": []},
            ]
        )

        async with clickup:
            engine = FileSyncEngine(clickup, monday, store, job_id, sleep=AsyncMock())
            result = await engine.sync_files("L1", "B1", SyncOptions(skip_duplicates=True))

        assert result.success is True
        assert result.files_transferred == 2
        assert result.files_skipped == 0
        assert result.files_failed == 0
        assert result.errors == []
        assert [c.args[0] for c in monday.add_file_to_column.await_args_list] == ["I1", "I1"]
        stats = await store.get_transfer_stats(job_id)
        assert (stats["transferred"], stats["skipped"], stats["failed"]) == (2, 0, 0)
        assert (await store.get_sync_job(job_id)).status == "completed"
