"""
@description 项目异常定义
@responsibility 区分认证、限流、网络、业务跳过等错误，决定是否重试
"""

from typing import Optional


class BridgeError(Exception):
    """所有桥接错误的基类"""


class AuthenticationError(BridgeError):
    """凭证缺失或无效，不可重试"""

    def __init__(self, message: str, service: Optional[str] = None):
        super().__init__(message)
        self.service = service


class ApiError(BridgeError):
    """远程 API 返回错误"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class RateLimitError(ApiError):
    """触发远程限流（429 或 complexity 预算耗尽）"""

    def __init__(self, message: str, retry_after: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class ServerError(ApiError):
    """远程服务 5xx 错误"""


class RetryExhaustedError(BridgeError):
    """重试次数耗尽，包装最后一次错误"""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"超过最大重试次数 ({attempts}): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class NonRetryableError(BridgeError):
    """业务失败：直接记为失败，不重试"""


class ItemSkipped(BridgeError):
    """业务跳过：记为 skipped，不重试"""
