"""
@description 配置管理模块
@responsibility 加载和验证 config.yaml，支持环境变量覆盖
"""

import os
import sys
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator


class ClickUpConfig(BaseModel):
    """ClickUp（任务来源）接口配置"""

    base_url: str = Field(
        default="https://api.clickup.com/api/v2", description="REST API 地址"
    )
    timeout: float = Field(default=30.0, description="单次请求超时（秒）")
    max_requests: int = Field(
        default=90, description="窗口内最大请求数（官方 100/分钟，保留余量）"
    )
    window_seconds: float = Field(default=60.0, description="限流窗口（秒）")
    min_interval: float = Field(default=0.1, description="两次请求最小间隔（秒）")


class MondayConfig(BaseModel):
    """monday.com（看板目标）接口配置"""

    api_url: str = Field(default="https://api.monday.com/v2", description="GraphQL 地址")
    file_url: str = Field(
        default="https://api.monday.com/v2/file", description="文件上传地址"
    )
    api_version: str = Field(default="2024-01", description="API-Version 请求头")
    timeout: float = Field(default=60.0, description="单次请求超时（秒）")
    max_requests: int = Field(default=60, description="窗口内最大请求数")
    window_seconds: float = Field(default=60.0, description="限流窗口（秒）")
    min_interval: float = Field(default=0.5, description="两次请求最小间隔（秒）")
    complexity_budget: int = Field(
        default=5_000_000, description="每分钟 complexity 点数预算"
    )


class SyncConfig(BaseModel):
    """文件同步默认参数"""

    batch_size: int = Field(default=10, ge=0, description="每批任务数，0 表示一批")
    max_retries: int = Field(default=3, ge=0, description="单项最大重试次数")
    max_parallel: int = Field(default=5, ge=1, description="并行模式最大并发")
    parallel: bool = Field(default=False, description="批内是否并发处理任务")
    delay_between_batches: float = Field(default=0.65, ge=0, description="批次间隔（秒）")
    max_file_size_mb: int = Field(default=500, gt=0, description="单文件大小上限（MB）")
    allowed_extensions: list[str] = Field(
        default_factory=list, description="允许的扩展名，空表示不限制"
    )

    @field_validator("allowed_extensions")
    @classmethod
    def _normalize_extensions(cls, value: list[str]) -> list[str]:
        return [ext.lower().lstrip(".") for ext in value]


class ReplicationConfig(BaseModel):
    """列表复制默认参数"""

    batch_size: int = Field(default=10, ge=0, description="每批任务数")
    max_retries: int = Field(default=3, ge=0, description="单任务最大重试次数")
    delay_between_batches: float = Field(default=0.5, ge=0, description="批次间隔（秒）")


class SecurityConfig(BaseModel):
    """凭证加密配置"""

    encryption_key: str = Field(default="", description="Fernet 密钥（urlsafe base64）")


class Config(BaseModel):
    """全局配置"""

    clickup: ClickUpConfig = Field(default_factory=ClickUpConfig)
    monday: MondayConfig = Field(default_factory=MondayConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    replication: ReplicationConfig = Field(default_factory=ReplicationConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)


def get_config_path() -> Path:
    """获取配置文件路径"""
    # 优先使用 CONFIG_PATH 环境变量，否则使用项目根目录的 config.yaml
    if config_path_str := os.environ.get("CONFIG_PATH"):
        return Path(config_path_str)
    return Path(__file__).parent.parent.parent / "config.yaml"


def load_config() -> Config:
    """加载配置文件并应用环境变量覆盖"""
    config_path = get_config_path()

    # 配置文件不存在时生成模板并退出
    if not config_path.exists():
        _generate_config_template(config_path)
        print(f"错误: 配置文件不存在: {config_path}")
        print(f"已生成配置模板: {config_path.parent / 'config.example.yaml'}")
        sys.exit(1)

    with open(config_path) as f:
        config_data = yaml.safe_load(f) or {}

    config = Config(**config_data)

    if encryption_key := os.environ.get("ENCRYPTION_KEY"):
        config.security.encryption_key = encryption_key

    return config


def _generate_config_template(config_path: Path) -> None:
    """生成配置模板文件"""
    template_path = config_path.parent / "config.example.yaml"

    if template_path.exists():
        return

    template_content = """# ClickUp（任务来源）
clickup:
  base_url: "https://api.clickup.com/api/v2"
  timeout: 30
  # 官方限制 100 次/分钟，这里保留 10 次余量
  max_requests: 90
  window_seconds: 60
  # 两次请求最小间隔（秒）
  min_interval: 0.1

# monday.com（看板目标）
monday:
  api_url: "https://api.monday.com/v2"
  file_url: "https://api.monday.com/v2/file"
  api_version: "2024-01"
  timeout: 60
  max_requests: 60
  window_seconds: 60
  min_interval: 0.5
  # 每分钟 complexity 点数预算
  complexity_budget: 5000000

# 文件同步默认参数
sync:
  batch_size: 10
  max_retries: 3
  # 批内并发处理任务，max_parallel 为并发上限
  parallel: false
  max_parallel: 5
  # 批次间隔（秒），配合每分钟配额
  delay_between_batches: 0.65
  # 单文件大小上限（MB）
  max_file_size_mb: 500
  # 允许的扩展名（不含点号），空列表表示不限制
  allowed_extensions: []

# 列表复制默认参数
replication:
  batch_size: 10
  max_retries: 3
  delay_between_batches: 0.5

# 凭证加密（Fernet 密钥，可用 ENCRYPTION_KEY 环境变量覆盖）
security:
  encryption_key: ""
"""

    with open(template_path, "w") as f:
        f.write(template_content)
