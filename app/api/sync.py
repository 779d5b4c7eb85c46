"""
@description 文件同步接口
@responsibility 启动 ClickUp 附件到 monday item 的文件同步任务
"""

from typing import TYPE_CHECKING

from fastapi import APIRouter, Header, HTTPException
from loguru import logger

from app.core.exceptions import AuthenticationError
from app.schemas.api import StartFileSyncRequest, StartJobResponse, success_response

if TYPE_CHECKING:
    from app.tasks.job_runner import JobManager

router = APIRouter()

_job_manager: "JobManager" = None


def init_sync_router(job_manager: "JobManager"):
    global _job_manager
    _job_manager = job_manager


@router.post("/sync/start")
async def start_sync(
    request: StartFileSyncRequest,
    user_id: str = Header("default", alias="X-User-Id"),
):
    try:
        job_id = await _job_manager.start_file_sync(
            user_id,
            request.clickup_list_id,
            request.monday_board_id,
            request.options,
        )
    except AuthenticationError as e:
        logger.warning(f"[start_sync] 凭证缺失: {e}")
        raise HTTPException(status_code=401, detail=str(e))

    return success_response(
        data=StartJobResponse(job_id=job_id, message="文件同步已开始"),
        message="文件同步已开始",
    )
