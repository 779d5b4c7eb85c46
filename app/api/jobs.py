"""
@description 任务状态接口
@responsibility 查询任务进度、文件传输记录，请求取消任务
"""

from typing import TYPE_CHECKING, Optional

from fastapi import APIRouter, HTTPException, Query

from app.schemas.api import (
    JobStatusResponse,
    TransferItem,
    TransferListResponse,
    success_response,
)

if TYPE_CHECKING:
    from app.services.job_store import JobStore
    from app.tasks.job_runner import JobManager

router = APIRouter()

_job_manager: "JobManager" = None
_store: "JobStore" = None


def init_jobs_router(job_manager: "JobManager", store: "JobStore"):
    global _job_manager, _store
    _job_manager = job_manager
    _store = store


@router.get("/jobs/{job_id}")
async def get_job_status(job_id: str):
    status = await _job_manager.get_job_status(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"任务 '{job_id}' 不存在")

    return success_response(data=JobStatusResponse(**status), message="获取任务状态成功")


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(job_id: str):
    kind = await _job_manager.cancel_job(job_id)
    if kind is None:
        raise HTTPException(status_code=404, detail=f"任务 '{job_id}' 不存在")

    return success_response(
        data={"job_id": job_id, "kind": kind}, message="已请求取消，将在当前批次结束后停止"
    )


@router.get("/jobs/{job_id}/transfers")
async def get_transfers(
    job_id: str,
    status: Optional[str] = Query(None, description="按状态过滤"),
    limit: int = Query(100, ge=1, le=1000, description="返回数量上限"),
):
    transfers = await _store.list_transfers(job_id, status=status, limit=limit)
    items = [
        TransferItem(
            id=record.id,
            clickup_task_id=record.clickup_task_id,
            monday_item_id=record.monday_item_id,
            file_name=record.file_name,
            file_size=record.file_size or 0,
            status=record.status,
            error_message=record.error_message,
            transferred_at=record.transferred_at,
        )
        for record in transfers
    ]

    return success_response(
        data=TransferListResponse(total=len(items), transfers=items),
        message="获取传输记录成功",
    )
