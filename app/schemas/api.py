"""
@description API 请求/响应模型
@responsibility 定义所有 API 接口和任务选项的数据结构
"""

from datetime import datetime
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field


class SyncOptions(BaseModel):
    batch_size: Optional[int] = Field(
        None, ge=0, description="每批任务数，0 表示一批处理全部，不填使用配置默认值"
    )
    skip_duplicates: bool = Field(True, description="跳过 item 上已存在的同名同大小文件")
    include_attachments: bool = Field(True, description="是否传输附件")
    include_comments: bool = Field(False, description="是否包含评论")
    include_subtasks: bool = Field(True, description="是否包含子任务的附件")
    clickup_link_field: Optional[str] = Field(
        None, description="回写 ClickUp 任务链接的 monday 列 ID"
    )


class StartFileSyncRequest(BaseModel):
    clickup_list_id: str = Field(..., description="ClickUp 列表 ID")
    monday_board_id: str = Field(..., description="monday 看板 ID")
    options: SyncOptions = Field(default_factory=SyncOptions, description="同步选项")


class ReplicationMode(str, Enum):
    FULL = "full"
    STRUCTURE_ONLY = "structure_only"
    DATA_ONLY = "data_only"


class ReplicationOptions(BaseModel):
    mode: ReplicationMode = Field(ReplicationMode.FULL, description="复制模式")
    include_attachments: bool = Field(True, description="是否传输附件")
    include_comments: bool = Field(True, description="是否迁移描述和评论")
    include_subtasks: bool = Field(True, description="是否把子任务创建为 subitem")
    preserve_assignees: bool = Field(True, description="是否保留负责人")
    preserve_dates: bool = Field(True, description="是否保留截止日期")


class StartReplicationRequest(BaseModel):
    clickup_list_id: str = Field(..., description="ClickUp 列表 ID")
    monday_board_name: str = Field(..., min_length=1, description="新建看板名称")
    options: ReplicationOptions = Field(
        default_factory=ReplicationOptions, description="复制选项"
    )


class AnalyzeRequest(BaseModel):
    clickup_list_id: str = Field(..., description="ClickUp 列表 ID")


class SuggestedMapping(BaseModel):
    clickup_field: str = Field(..., description="ClickUp 字段名")
    clickup_field_type: str = Field(..., description="ClickUp 字段类型")
    monday_column: str = Field(..., description="建议的 monday 列名")
    monday_column_type: str = Field(..., description="建议的 monday 列类型")


class AnalyzeResponse(BaseModel):
    list_id: str = Field(..., description="列表 ID")
    list_name: Optional[str] = Field(None, description="列表名称")
    task_count: int = Field(..., description="任务数量")
    custom_field_count: int = Field(..., description="自定义字段数量")
    suggested_mappings: list[SuggestedMapping] = Field(..., description="建议映射")


class StartJobResponse(BaseModel):
    job_id: str = Field(..., description="任务 ID")
    message: str = Field(..., description="操作消息")


class FileStats(BaseModel):
    total: int = Field(0, description="传输记录总数")
    pending: int = Field(0, description="等待中")
    transferred: int = Field(0, description="已传输")
    skipped: int = Field(0, description="已跳过")
    failed: int = Field(0, description="失败")


class JobStatusResponse(BaseModel):
    job_id: str = Field(..., description="任务 ID")
    kind: str = Field(..., description="任务类型（file_sync / list_replication）")
    status: str = Field(..., description="任务状态")
    total_tasks: int = Field(0, description="任务总数")
    processed_tasks: int = Field(0, description="已处理任务数")
    progress: float = Field(0.0, description="进度百分比")
    clickup_list_id: str = Field(..., description="ClickUp 列表 ID")
    clickup_list_name: Optional[str] = Field(None, description="ClickUp 列表名称")
    monday_board_id: Optional[str] = Field(None, description="monday 看板 ID")
    monday_board_name: Optional[str] = Field(None, description="monday 看板名称")
    replication_mode: Optional[str] = Field(None, description="复制模式")
    error_message: Optional[str] = Field(None, description="失败原因")
    error_log: list[dict[str, Any]] = Field(default_factory=list, description="错误日志")
    cancel_requested: bool = Field(False, description="是否已请求取消")
    file_stats: FileStats = Field(default_factory=FileStats, description="文件传输统计")
    started_at: Optional[datetime] = Field(None, description="开始时间")
    completed_at: Optional[datetime] = Field(None, description="完成时间")
    created_at: Optional[datetime] = Field(None, description="创建时间")


class TransferItem(BaseModel):
    id: int = Field(..., description="记录 ID")
    clickup_task_id: str = Field(..., description="ClickUp 任务 ID")
    monday_item_id: Optional[str] = Field(None, description="monday item ID")
    file_name: str = Field(..., description="文件名")
    file_size: int = Field(0, description="文件大小（字节）")
    status: str = Field(..., description="传输状态")
    error_message: Optional[str] = Field(None, description="错误信息")
    transferred_at: Optional[datetime] = Field(None, description="传输时间")


class TransferListResponse(BaseModel):
    total: int = Field(..., description="记录数量")
    transfers: list[TransferItem] = Field(..., description="传输记录")


class ServiceName(str, Enum):
    CLICKUP = "clickup"
    MONDAY = "monday"


class SaveTokenRequest(BaseModel):
    access_token: str = Field(..., min_length=1, description="访问令牌")
    workspace_id: Optional[str] = Field(None, description="工作区 ID")
    verify: bool = Field(True, description="保存前是否验证令牌")


class AuthStatusResponse(BaseModel):
    clickup: bool = Field(..., description="是否已保存 ClickUp 凭证")
    monday: bool = Field(..., description="是否已保存 monday 凭证")


class SyncConfigResponse(BaseModel):
    batch_size: int = Field(..., description="每批任务数")
    max_retries: int = Field(..., description="单项最大重试次数")
    max_parallel: int = Field(..., description="并行模式最大并发")
    parallel: bool = Field(..., description="批内是否并发处理任务")
    delay_between_batches: float = Field(..., description="批次间隔（秒）")
    max_file_size_mb: int = Field(..., description="单文件大小上限（MB）")
    allowed_extensions: list[str] = Field(..., description="允许的扩展名")


class ReplicationConfigResponse(BaseModel):
    batch_size: int = Field(..., description="每批任务数")
    max_retries: int = Field(..., description="单任务最大重试次数")
    delay_between_batches: float = Field(..., description="批次间隔（秒）")


class ConfigResponse(BaseModel):
    sync: SyncConfigResponse = Field(..., description="文件同步配置")
    replication: ReplicationConfigResponse = Field(..., description="列表复制配置")


class SyncConfigUpdate(BaseModel):
    batch_size: Optional[int] = Field(None, ge=0, description="每批任务数")
    max_retries: Optional[int] = Field(None, ge=0, description="单项最大重试次数")
    max_parallel: Optional[int] = Field(None, ge=1, description="并行模式最大并发")
    parallel: Optional[bool] = Field(None, description="批内是否并发处理任务")
    delay_between_batches: Optional[float] = Field(None, ge=0, description="批次间隔")
    max_file_size_mb: Optional[int] = Field(None, gt=0, description="单文件大小上限")
    allowed_extensions: Optional[list[str]] = Field(None, description="允许的扩展名")


class ReplicationConfigUpdate(BaseModel):
    batch_size: Optional[int] = Field(None, ge=0, description="每批任务数")
    max_retries: Optional[int] = Field(None, ge=0, description="单任务最大重试次数")
    delay_between_batches: Optional[float] = Field(None, ge=0, description="批次间隔")


class UpdateConfigRequest(BaseModel):
    sync: Optional[SyncConfigUpdate] = Field(None, description="文件同步配置更新")
    replication: Optional[ReplicationConfigUpdate] = Field(
        None, description="列表复制配置更新"
    )


class UpdateConfigResponse(BaseModel):
    message: str = Field(..., description="操作消息")


class RateLimitStatus(BaseModel):
    clickup_remaining: int = Field(..., description="ClickUp 窗口剩余请求数")
    monday_remaining: int = Field(..., description="monday 窗口剩余请求数")
    monday_complexity_remaining: int = Field(..., description="monday complexity 剩余点数")


class StatusResponse(BaseModel):
    running_jobs: int = Field(..., description="运行中的任务数量")
    job_ids: list[str] = Field(default_factory=list, description="运行中的任务 ID")
    rate_limits: RateLimitStatus = Field(..., description="限流状态")


T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """统一 API 响应格式"""

    code: int = Field(..., description="响应码（0=成功，非0=错误）")
    message: str = Field(..., description="响应消息")
    data: Optional[T] = Field(None, description="响应数据")


def success_response(data: T, message: str = "操作成功") -> ApiResponse[T]:
    """创建成功响应"""
    return ApiResponse(code=0, message=message, data=data)


def error_response(code: int, message: str, data: Optional[T] = None) -> ApiResponse[T]:
    """创建错误响应"""
    return ApiResponse(code=code, message=message, data=data)
