"""
@description 重复文件检测与文件校验
@responsibility 判断附件是否已存在于 monday item、校验大小和扩展名
"""

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from app.utils.helpers import generate_file_hash

DEFAULT_MAX_SIZE_BYTES = 500 * 1024 * 1024


@dataclass
class DuplicateCheckResult:
    is_duplicate: bool
    matched_asset: Optional[dict] = None
    reason: Optional[str] = None


def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def get_extension(filename: str) -> str:
    """提取扩展名（小写，不含点号），没有扩展名返回空字符串"""
    if "." not in filename:
        return ""
    return filename.rsplit(".", 1)[-1].lower()


def check_by_name_and_size(
    attachment: dict, existing_assets: list[dict]
) -> DuplicateCheckResult:
    """
    按文件名（忽略大小写）和字节大小判断是否重复

    Args:
        attachment: ClickUp 附件，需要包含 'title' 和 'size'
        existing_assets: monday item 上已有的 assets，包含 'name' 和 'file_size'

    Returns:
        名称和大小都相同时 is_duplicate=True，并带上匹配到的 asset
    """
    title = (attachment.get("title") or "").lower()
    size = _as_int(attachment.get("size"))

    for asset in existing_assets:
        if (asset.get("name") or "").lower() != title:
            continue
        if size is not None and _as_int(asset.get("file_size")) == size:
            return DuplicateCheckResult(
                is_duplicate=True, matched_asset=asset, reason="名称和大小一致"
            )

    return DuplicateCheckResult(is_duplicate=False)


def check_by_hash(content: bytes, existing_assets: list[dict]) -> DuplicateCheckResult:
    """
    按内容哈希判断是否重复

    monday 不返回已存文件的哈希，这里只计算新文件哈希，始终判定为不重复。
    """
    file_hash = generate_file_hash(content)
    logger.debug(f"文件哈希 {file_hash}，monday 不提供哈希，跳过哈希比对")
    return DuplicateCheckResult(is_duplicate=False)


def check(
    attachment: dict,
    existing_assets: list[dict],
    content: Optional[bytes] = None,
) -> DuplicateCheckResult:
    """依次使用名称+大小、内容哈希两种策略"""
    result = check_by_name_and_size(attachment, existing_assets)
    if result.is_duplicate:
        return result

    if content is not None:
        result = check_by_hash(content, existing_assets)
        if result.is_duplicate:
            return result

    return DuplicateCheckResult(is_duplicate=False)


def is_allowed_file_type(
    filename: str, allowed_extensions: Optional[list[str]] = None
) -> bool:
    """扩展名是否在允许列表中，列表为空表示不限制"""
    if not allowed_extensions:
        return True
    return get_extension(filename) in allowed_extensions


def is_within_size_limit(
    size_bytes: int, max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES
) -> bool:
    return size_bytes <= max_size_bytes


def validate_file(
    attachment: dict,
    max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES,
    allowed_extensions: Optional[list[str]] = None,
) -> Optional[str]:
    """
    上传前校验附件

    Returns:
        校验通过返回 None，否则返回拒绝原因
    """
    size = _as_int(attachment.get("size")) or 0
    if not is_within_size_limit(size, max_size_bytes):
        return f"文件大小 {size} 超过上限 {max_size_bytes}"

    title = attachment.get("title") or ""
    if not is_allowed_file_type(title, allowed_extensions):
        extension = attachment.get("extension") or get_extension(title)
        return f"不允许的文件类型: {extension}"

    return None
