"""Provider 抽象接口。

上层 ChatEngine 不直接依赖具体厂商的 HTTP 细节，而是依赖此协议：

- 每个协议族实现一个 ProviderClient（GeminiClient / OpenAICompatibleClient /
  AnthropicClient）。
- 负责：把统一的 Message / GenerationConfig 转成具体 API 请求，
  并把流式响应解析为统一的增量回调 on_increment(累计文本, 元数据)。

ProviderIdentity 在每次调用时显式传入，客户端本身不持有凭证。
"""

import json
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

import httpx

from chat_core.domain.exceptions import ApiError, NetworkError, RateLimitError
from chat_core.domain.models import (
    Attachment,
    CancellationToken,
    GenerationConfig,
    Message,
    ModelCatalog,
    ProviderIdentity,
    Role,
)

# on_increment(accumulated_text, metadata=None, attachments=None)
OnIncrement = Callable[..., None]


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: 协议族名称，用于日志。
    - list_models(identity): 拉取模型列表（可附带余额）。
    - stream_generate(...): 执行一次流式生成，每个增量调用一次 on_increment。
    """

    name: str

    async def list_models(self, identity: ProviderIdentity) -> ModelCatalog:
        ...

    async def stream_generate(
        self,
        identity: ProviderIdentity,
        model_id: str,
        turn_text: str,
        attachments: Sequence[Attachment],
        history: Sequence[Message],
        system_instruction: Optional[str],
        config: GenerationConfig,
        on_increment: OnIncrement,
        token: CancellationToken,
    ) -> None:
        ...


def prune_history(history: Sequence[Message], limit: int) -> List[Message]:
    """去掉出错消息与 system 消息后，保留最近 limit 条。"""

    valid = [m for m in history if not m.is_error and m.role is not Role.SYSTEM]
    if limit <= 0:
        return []
    return valid[-limit:]


def network_error(exc: httpx.RequestError) -> NetworkError:
    """把 httpx 的传输层异常包装为 NetworkError。

    消息统一以 "Network error:" 开头，便于重试与错误翻译按文本分类。
    """

    detail = str(exc) or type(exc).__name__
    return NetworkError(code="NETWORK_ERROR", message=f"Network error: {type(exc).__name__}: {detail}")


def _vendor_message(body: str) -> str:
    try:
        data = json.loads(body)
    except ValueError:
        return body
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return err
    return body


async def ensure_ok(resp: httpx.Response, provider: str) -> None:
    """非 2xx 响应转为 RateLimitError / ApiError。

    流式响应需要先 aread 才能读取错误体。
    """

    if resp.status_code < 400:
        return
    try:
        await resp.aread()
        body = resp.text
    except (httpx.HTTPError, RuntimeError):
        body = ""
    message = f"HTTP Error {resp.status_code}: {_vendor_message(body)}"
    if resp.status_code == 429:
        raise RateLimitError(code="RATE_LIMIT", message=message, http_status=429, provider=provider)
    raise ApiError(code="API_ERROR", message=message, http_status=resp.status_code, provider=provider)


def bearer_headers(api_key: str) -> Dict[str, Any]:
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
