"""
@description 配置管理接口
@responsibility 处理同步和复制默认参数的查询与修改
"""

from typing import TYPE_CHECKING

from fastapi import APIRouter

from app.schemas.api import (
    ConfigResponse,
    ReplicationConfigResponse,
    SyncConfigResponse,
    UpdateConfigRequest,
    UpdateConfigResponse,
    success_response,
)

if TYPE_CHECKING:
    from app.core.config import Config

router = APIRouter()

_config: "Config" = None


def init_config_router(config: "Config"):
    global _config
    _config = config


@router.get("/config")
async def get_config():
    return success_response(
        data=ConfigResponse(
            sync=SyncConfigResponse(**_config.sync.model_dump()),
            replication=ReplicationConfigResponse(**_config.replication.model_dump()),
        ),
        message="获取配置成功",
    )


@router.put("/config")
async def update_config(request: UpdateConfigRequest):
    if request.sync:
        for key, value in request.sync.model_dump(exclude_none=True).items():
            if key == "allowed_extensions":
                value = [ext.lower().lstrip(".") for ext in value]
            setattr(_config.sync, key, value)

    if request.replication:
        for key, value in request.replication.model_dump(exclude_none=True).items():
            setattr(_config.replication, key, value)

    return success_response(
        data=UpdateConfigResponse(message="配置更新成功"), message="配置更新成功"
    )
