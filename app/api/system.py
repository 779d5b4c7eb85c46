"""
@description 系统状态接口
@responsibility 查询运行中的任务和各服务的限流状态
"""

from typing import TYPE_CHECKING, Optional

from fastapi import APIRouter

from app.schemas.api import ApiResponse, RateLimitStatus, StatusResponse, success_response

if TYPE_CHECKING:
    from app.tasks.job_runner import JobManager

router = APIRouter()

_job_manager: Optional["JobManager"] = None


def init_system_router(job_manager: "JobManager"):
    global _job_manager
    _job_manager = job_manager


@router.get("/status", response_model=ApiResponse[StatusResponse])
async def get_status():
    job_ids = _job_manager.running_jobs()
    return success_response(
        data=StatusResponse(
            running_jobs=len(job_ids),
            job_ids=job_ids,
            rate_limits=RateLimitStatus(**_job_manager.governors.status()),
        ),
        message="获取系统状态成功",
    )
