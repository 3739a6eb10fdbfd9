"""原始错误 -> 用户可读提示。

按固定顺序对小写化后的错误文本做子串匹配，第一个命中的规则生效。
规则顺序本身就是契约：例如同时包含 "401" 与 "404" 的信息会被归为 401。
"""

from enum import Enum
from typing import Tuple, Union


class ErrorCategory(str, Enum):
    ILLEGAL_CREDENTIAL_CHARACTERS = "illegal_credential_characters"
    NETWORK_UNREACHABLE = "network_unreachable"
    UNAUTHORIZED = "unauthorized"
    PAYMENT_REQUIRED = "payment_required"
    FORBIDDEN = "forbidden"
    API_NOT_ENABLED = "api_not_enabled"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXHAUSTED = "quota_exhausted"
    UPSTREAM_ERROR = "upstream_error"
    MALFORMED_REQUEST = "malformed_request"
    UNCLASSIFIED = "unclassified"


_ILLEGAL_CHARS = ("iso-8859-1", "codec can't encode", "non-ascii", "illegal header", "invalid header")
_NETWORK = (
    "failed to fetch",
    "network error",
    "connection refused",
    "load failed",
    "all connection attempts failed",
    "name or service not known",
)
_UNAUTHORIZED = ("401", "unauthorized", "invalid_api_key", "invalid api key")
_PAYMENT = ("402", "payment required", "insufficient balance", "insufficient_balance")
_FORBIDDEN = ("403", "permission denied", "access denied", "forbidden")
_API_NOT_ENABLED = ("api not enabled", "has not been used", "service_disabled", "is disabled")
_NOT_FOUND = ("404", "not found")
_RATE = ("429", "rate limit", "quota", "too many requests")
_QUOTA = ("quota", "exhausted", "insufficient_quota")
_UPSTREAM = ("500", "502", "503", "504", "internal server error", "bad gateway", "service unavailable", "overloaded")
_MALFORMED = ("400", "invalid argument", "bad request")

_MESSAGES = {
    ErrorCategory.ILLEGAL_CREDENTIAL_CHARACTERS: "API Key 或 Base URL 包含非法字符（中文/全角/控制符）。请使用纯英文格式。",
    ErrorCategory.NETWORK_UNREACHABLE: "网络请求失败，请检查网络或代理设置。",
    ErrorCategory.UNAUTHORIZED: "API Key 无效 (401)。",
    ErrorCategory.PAYMENT_REQUIRED: "账户余额不足，请充值后重试 (402)。",
    ErrorCategory.FORBIDDEN: "权限不足或区域受限 (403)。",
    ErrorCategory.API_NOT_ENABLED: "该 API 尚未在控制台启用 (403)。",
    ErrorCategory.NOT_FOUND: "路径或模型未找到 (404)。请检查 Base URL。",
    ErrorCategory.RATE_LIMITED: "请求过快，请稍后再试 (429)。",
    ErrorCategory.QUOTA_EXHAUSTED: "额度已用尽 (429)。",
    ErrorCategory.UPSTREAM_ERROR: "服务商服务器繁忙 (5xx)。",
    ErrorCategory.MALFORMED_REQUEST: "请求格式错误 (400)。",
}

UNCLASSIFIED_LIMIT = 100


def _failure_text(raw: Union[BaseException, str, None]) -> str:
    if raw is None:
        return ""
    if isinstance(raw, BaseException):
        return str(raw) or type(raw).__name__
    return str(raw)


def _has_any(text: str, needles: Tuple[str, ...]) -> bool:
    return any(n in text for n in needles)


def classify(raw: Union[BaseException, str, None]) -> ErrorCategory:
    """把原始错误归入封闭的错误类别集合。"""

    msg = _failure_text(raw).lower()
    if _has_any(msg, _ILLEGAL_CHARS):
        return ErrorCategory.ILLEGAL_CREDENTIAL_CHARACTERS
    if _has_any(msg, _NETWORK):
        return ErrorCategory.NETWORK_UNREACHABLE
    if _has_any(msg, _UNAUTHORIZED):
        return ErrorCategory.UNAUTHORIZED
    if _has_any(msg, _PAYMENT):
        return ErrorCategory.PAYMENT_REQUIRED
    if _has_any(msg, _FORBIDDEN):
        if _has_any(msg, _API_NOT_ENABLED):
            return ErrorCategory.API_NOT_ENABLED
        return ErrorCategory.FORBIDDEN
    if _has_any(msg, _NOT_FOUND):
        return ErrorCategory.NOT_FOUND
    if _has_any(msg, _RATE):
        if _has_any(msg, _QUOTA):
            return ErrorCategory.QUOTA_EXHAUSTED
        return ErrorCategory.RATE_LIMITED
    if _has_any(msg, _UPSTREAM):
        return ErrorCategory.UPSTREAM_ERROR
    if _has_any(msg, _MALFORMED):
        return ErrorCategory.MALFORMED_REQUEST
    return ErrorCategory.UNCLASSIFIED


def translate(raw: Union[BaseException, str, None]) -> str:
    """返回展示给用户的错误提示。未归类的错误截断原始信息。"""

    category = classify(raw)
    if category is ErrorCategory.UNCLASSIFIED:
        return f"请求出错: {_failure_text(raw).lower()[:UNCLASSIFIED_LIMIT]}"
    return _MESSAGES[category]
