"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
Provider 层负责抛出，AIRequestGateway 负责把它们收敛为 RequestOutcome。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "NETWORK_ERROR"）。
        message: 可读错误信息（仅用于日志与诊断，不直接播报给用户）。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 type、param、raw_body 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败，或非 2xx 且无法解析出结构化错误。"""


class ApiError(BusinessError):
    """AI 接口返回了可解析的 {error: {...}} 结构。"""


class RateLimitError(BusinessError):
    """本地限流：距离上次请求过近，或已有请求在途。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class RequestTimeoutError(BusinessError):
    """请求超过 request_timeout 仍未完成。"""


class ResponseParseError(BusinessError):
    """2xx 响应体无法解析，raw_body 放在 extra 中供日志使用。"""


class VoiceIOError(BusinessError):
    """语音采集 / 播放端口失败（STT、TTS 引擎报错等）。"""
