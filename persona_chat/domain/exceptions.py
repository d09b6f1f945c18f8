"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError，
便于在 API 层、推送流与客户端统一捕获并转换为 {code, message, details}。
"""

from typing import Any, Dict


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "PERSONA_NOT_FOUND"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 details、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)

    @property
    def details(self) -> str:
        return str(self.extra.get("details") or "")

    def to_payload(self, include_details: bool = True) -> Dict[str, Any]:
        """转换为 HTTP / 推送流中使用的 error 对象。"""

        return {
            "code": self.code,
            "message": self.message,
            "details": self.details if include_details else "Please try again later",
        }


class InvalidInput(BusinessError):
    """请求参数错误（空消息、历史格式错误、未知人设），调用方需修正后再发。"""


class PersonaNotFound(InvalidInput):
    """未知的人设 ID，details 中列出全部可用 ID。"""

    def __init__(self, persona_id: str, available: list[str] | None = None):
        super().__init__(
            code="PERSONA_NOT_FOUND",
            message=f"Persona with ID '{persona_id}' not found",
            http_status=404,
            details=f"Available personas: {', '.join(available or [])}",
        )
        self.persona_id = persona_id


class ValidationError(BusinessError):
    """配置校验失败，例如缺少 API Key。"""


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """Provider 限流类错误的基类，由调用方决定是否退避重试。"""


class UpstreamQuotaExceeded(RateLimitError):
    """补全服务额度耗尽（insufficient_quota）。"""


class UpstreamRateLimited(RateLimitError):
    """补全服务限流（rate_limit_exceeded 或其他 429）。"""


class StreamError(BusinessError):
    """服务端在推送流中发出的终止错误事件。"""


class StreamTransportError(BusinessError):
    """推送连接中途断开或在完成信号之前关闭。"""


class StreamInFlight(BusinessError):
    """同一人设已有进行中的流，不允许并发发送。"""


class StorageWriteError(BusinessError):
    """本地持久化在淘汰重试后仍然失败。"""
