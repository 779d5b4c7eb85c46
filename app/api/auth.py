"""
@description 凭证管理接口
@responsibility 保存 ClickUp / monday 访问令牌，查询凭证状态
"""

from typing import TYPE_CHECKING

from fastapi import APIRouter, Header, HTTPException
from loguru import logger

from app.schemas.api import (
    AuthStatusResponse,
    SaveTokenRequest,
    ServiceName,
    success_response,
)

if TYPE_CHECKING:
    from app.services.credentials import CredentialVault
    from app.tasks.job_runner import JobManager

router = APIRouter()

_vault: "CredentialVault" = None
_job_manager: "JobManager" = None


def init_auth_router(vault: "CredentialVault", job_manager: "JobManager"):
    global _vault, _job_manager
    _vault = vault
    _job_manager = job_manager


async def _verify(service: ServiceName, token: str) -> bool:
    if service == ServiceName.CLICKUP:
        client = _job_manager.create_clickup_client(token)
    else:
        client = _job_manager.create_monday_client(token)
    async with client:
        return await client.verify_token()


@router.post("/auth/{service}/token")
async def save_token(
    service: ServiceName,
    request: SaveTokenRequest,
    user_id: str = Header("default", alias="X-User-Id"),
):
    if request.verify and not await _verify(service, request.access_token):
        logger.warning(f"[save_token] {service.value} 令牌验证失败 (user={user_id})")
        raise HTTPException(status_code=401, detail=f"{service.value} 令牌验证失败")

    await _vault.set(
        user_id,
        service.value,
        request.access_token,
        workspace_id=request.workspace_id,
    )
    return success_response(data={"service": service.value}, message="凭证保存成功")


@router.get("/auth/status")
async def get_auth_status(user_id: str = Header("default", alias="X-User-Id")):
    status = await _vault.status(user_id)
    return success_response(data=AuthStatusResponse(**status), message="获取凭证状态成功")
