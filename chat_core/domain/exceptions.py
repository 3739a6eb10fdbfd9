"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在编排层或 UI 层做统一捕获与用户提示。

注意：取消生成 (GenerationCancelled) 不是错误，它是独立的终止状态，
因此刻意不继承 BusinessError，也不会进入错误翻译流程。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "API_ERROR"）。
        message: 错误信息（原始信息，展示给用户前需经过 error_translator）。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """Provider 限流错误，由 retry 模块负责退避重试。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class GenerationCancelled(Exception):
    """当前生成被取消（stop 或被同一 lane 的新请求顶替）。"""
