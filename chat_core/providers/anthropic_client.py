"""Anthropic 兼容协议族适配器。

与 OpenAI 兼容协议的差异：
- 认证使用 x-api-key + anthropic-version 头，而不是 Bearer。
- 对话端点为 {base}/messages，system 作为顶层字段，messages 中不含 system。
- max_tokens 必填。
- 流式事件中只有 content_block_delta 携带文本增量；error 事件直接抛错。
"""

from typing import Any, Dict, Optional, Sequence

from chat_core.domain.exceptions import ApiError
from chat_core.domain.models import Attachment, GenerationConfig, Message, ProviderFamily, ProviderIdentity
from chat_core.providers.openai_client import OpenAICompatibleClient
from chat_core.providers.streaming import StreamDelta

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicClient(OpenAICompatibleClient):
    """Anthropic 协议客户端，复用 OpenAI 兼容客户端的列表与流式读取流程。"""

    name = "anthropic"
    family = ProviderFamily.ANTHROPIC

    async def fetch_balance(self, identity: ProviderIdentity) -> Optional[str]:
        return None

    def _endpoint(self, identity: ProviderIdentity) -> str:
        return f"{identity.resolved_base_url}/messages"

    def _auth_headers(self, identity: ProviderIdentity) -> Dict[str, str]:
        return {
            "x-api-key": identity.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def _build_payload(
        self,
        model_id: str,
        turn_text: str,
        attachments: Sequence[Attachment],
        history: Sequence[Message],
        system_instruction: Optional[str],
        config: GenerationConfig,
    ) -> Dict[str, Any]:
        messages = self._build_messages(model_id, turn_text, attachments, history, None, config)
        payload: Dict[str, Any] = {
            "model": model_id,
            "messages": [m for m in messages if m["role"] != "system"],
            "max_tokens": config.max_output_tokens,
            "stream": True,
            "temperature": config.temperature,
            "top_p": config.top_p,
        }
        if system_instruction:
            payload["system"] = system_instruction
        return payload

    def _decode_payload(self, data: Dict[str, Any]) -> StreamDelta:
        event_type = data.get("type")
        if event_type == "error":
            err = data.get("error") or {}
            message = f"{err.get('type', 'error')}: {err.get('message', '')}"
            raise ApiError(code="API_ERROR", message=message, http_status=502, provider=self.name)
        if event_type == "content_block_delta":
            delta = data.get("delta") or {}
            return StreamDelta(text=delta.get("text") or "")
        return StreamDelta()
