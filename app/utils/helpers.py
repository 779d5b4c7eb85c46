"""
@description 通用工具函数
@responsibility 提供文件哈希、时间戳转换等项目级辅助功能
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Any, Optional


def generate_file_hash(content: bytes) -> str:
    """计算文件内容的 sha256（十六进制小写）"""
    return hashlib.sha256(content).hexdigest()


def ms_timestamp_to_date(value: Any) -> Optional[str]:
    """
    将 ClickUp 的毫秒时间戳转换为 ISO 日期（UTC）

    Args:
        value: 毫秒时间戳，可以是 int、数字字符串或 {"date": ...}

    Returns:
        "YYYY-MM-DD"，无法解析时返回 None

    Examples:
        >>> ms_timestamp_to_date("1700000000000")
        '2023-11-14'

        >>> ms_timestamp_to_date("abc") is None
        True
    """
    if isinstance(value, dict):
        value = value.get("date")
    if value is None or value == "":
        return None

    try:
        millis = int(float(value))
    except (TypeError, ValueError):
        return None

    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).date().isoformat()
