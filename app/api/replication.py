"""
@description 列表复制接口
@responsibility 分析 ClickUp 列表结构、启动列表复制任务
"""

from typing import TYPE_CHECKING

from fastapi import APIRouter, Header, HTTPException
from loguru import logger

from app.core.exceptions import ApiError, AuthenticationError, RetryExhaustedError
from app.schemas.api import (
    AnalyzeRequest,
    AnalyzeResponse,
    StartJobResponse,
    StartReplicationRequest,
    success_response,
)

if TYPE_CHECKING:
    from app.tasks.job_runner import JobManager

router = APIRouter()

_job_manager: "JobManager" = None


def init_replication_router(job_manager: "JobManager"):
    global _job_manager
    _job_manager = job_manager


@router.post("/replication/analyze")
async def analyze_list(
    request: AnalyzeRequest,
    user_id: str = Header("default", alias="X-User-Id"),
):
    try:
        analysis = await _job_manager.analyze_list(user_id, request.clickup_list_id)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except (ApiError, RetryExhaustedError) as e:
        logger.error(f"[analyze_list] 分析列表失败: {e}")
        raise HTTPException(status_code=502, detail=f"分析列表失败: {e}")

    return success_response(data=AnalyzeResponse(**analysis), message="列表分析完成")


@router.post("/replication/start")
async def start_replication(
    request: StartReplicationRequest,
    user_id: str = Header("default", alias="X-User-Id"),
):
    try:
        job_id = await _job_manager.start_list_replication(
            user_id,
            request.clickup_list_id,
            request.monday_board_name,
            request.options,
        )
    except AuthenticationError as e:
        logger.warning(f"[start_replication] 凭证缺失: {e}")
        raise HTTPException(status_code=401, detail=str(e))

    return success_response(
        data=StartJobResponse(job_id=job_id, message="列表复制已开始"),
        message="列表复制已开始",
    )
