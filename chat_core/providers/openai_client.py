"""OpenAI 兼容协议族适配器。

覆盖 OpenAI 官方以及 DeepSeek、Kimi、智谱、通义、OneAPI 等兼容网关：
- 模型列表: GET {base}/models
- 对话: POST {base}/chat/completions（stream=true）
- 认证: Authorization: Bearer <api_key>

本模块负责：

1. 将统一的 Message / Attachment 转换为 role 标记的 messages 数组。
2. 调用 HTTP 接口，网络错误/限流/服务端错误统一包装为业务异常，
   可重试的失败交给 with_retry 做指数退避。
3. 将 `data: {...}` 帧解析为 StreamDelta，推理模型的 reasoning_content
   用 <think></think> 包裹后拼接进正文，供展示层分离。
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import BusinessError, ValidationError
from chat_core.domain.models import (
    Attachment,
    CancellationToken,
    ContentType,
    GenerationConfig,
    Message,
    ModelCapability,
    ModelCatalog,
    ProviderFamily,
    ProviderIdentity,
    Role,
)
from chat_core.infrastructure.logging.logger import log_event
from chat_core.infrastructure.retry import RetryPolicy, with_retry
from chat_core.providers.base import OnIncrement, bearer_headers, ensure_ok, network_error, prune_history
from chat_core.providers.registry import get_provider_config
from chat_core.providers.streaming import StreamDelta, iter_sse_payloads, wrap_reasoning

_LIST_VISION_HINTS = ("vision", "4o", "gemini", "claude-3", "llava")
_REQUEST_VISION_HINTS = ("vision", "4o", "claude", "gemini", "llava")
_VIDEO_HINTS = ("video", "sora", "veo", "luma")
_AUDIO_HINTS = ("audio", "tts", "whisper")
_THINKING_HINTS = ("r1", "reasoning", "o1", "thinking")
_ONLINE_HINTS = ("online", "search", "net")

BALANCE_ENDPOINTS = ("/dashboard/billing/usage", "/api/user/status")


def _contains(model_id: str, hints: Iterable[str]) -> bool:
    lower = model_id.lower()
    return any(h in lower for h in hints)


def supports_vision(model_id: str) -> bool:
    """按模型 ID 粗略判断是否支持图片输入（请求侧判断）。"""

    return _contains(model_id, _REQUEST_VISION_HINTS)


def is_o1_model(model_id: str) -> bool:
    return "o1" in model_id


def infer_capability(model_id: str, identity: ProviderIdentity) -> ModelCapability:
    """根据模型 ID 子串推断能力标记。"""

    images = _contains(model_id, _LIST_VISION_HINTS)
    thinking = _contains(model_id, _THINKING_HINTS)
    tags = " ".join(t for t, on in (("[视觉]", images), ("[推理]", thinking)) if on)
    return ModelCapability(
        id=model_id,
        name=model_id,
        provider=identity.kind,
        description=f"自动检测模型 {tags}".strip(),
        supports_images=images,
        supports_video_gen=_contains(model_id, _VIDEO_HINTS),
        supports_audio=_contains(model_id, _AUDIO_HINTS),
        is_thinking=thinking,
        is_online=_contains(model_id, _ONLINE_HINTS),
    )


def extract_model_list(data: Any) -> List[Dict[str, Any]]:
    """兼容裸数组与 data/models 包装两种返回格式。"""

    if isinstance(data, list):
        raw = data
    elif isinstance(data, dict) and isinstance(data.get("data"), list):
        raw = data["data"]
    elif isinstance(data, dict) and isinstance(data.get("models"), list):
        raw = data["models"]
    else:
        return []
    return [m for m in raw if isinstance(m, dict) and m.get("id")]


def format_balance(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    if isinstance(data.get("data"), dict):
        nested = format_balance(data["data"])
        if nested:
            return nested
    if data.get("balance") is not None:
        try:
            return f"¥{float(data['balance']):.2f}"
        except (TypeError, ValueError):
            return None
    if data.get("quota") is not None:
        return f"Quota: {data['quota']}"
    return None


class OpenAICompatibleClient:
    """OpenAI 兼容协议族客户端。"""

    name = "openai"
    family = ProviderFamily.OPENAI

    def __init__(
        self,
        cfg=settings,
        retry_policy: Optional[RetryPolicy] = None,
        balance_policy: Optional[RetryPolicy] = None,
    ):
        self._settings = cfg
        self._retry_policy = retry_policy or RetryPolicy.from_settings(cfg)
        self._balance_policy = balance_policy or RetryPolicy.from_settings(cfg, balance=True)

    # ---- 模型列表 ----

    async def list_models(self, identity: ProviderIdentity) -> ModelCatalog:
        self._require_key(identity)
        base = identity.resolved_base_url
        data = await with_retry(
            lambda: self._get_json(f"{base}/models", identity),
            self._retry_policy,
            log_ctx={"provider": self.name, "op": "list_models"},
        )
        raw = extract_model_list(data)
        if not raw:
            return ModelCatalog(models=[], platform="Unknown")
        models = sorted((infer_capability(str(m["id"]), identity) for m in raw), key=lambda c: c.id)
        catalog = ModelCatalog(models=models, platform=get_provider_config(identity.kind).platform)
        catalog.balance = await self.fetch_balance(identity)
        return catalog

    async def fetch_balance(self, identity: ProviderIdentity) -> Optional[str]:
        """尽力而为的余额/额度查询。

        余额仅用于展示：任何失败都只记录 warning 日志并返回 None，
        不会影响模型列表结果。
        """

        if identity.family is not ProviderFamily.OPENAI:
            return None
        if not get_provider_config(identity.kind).supports_balance:
            return None
        base = identity.resolved_base_url
        for path in BALANCE_ENDPOINTS:
            url = f"{base}{path}"
            try:
                data = await with_retry(
                    lambda url=url: self._get_json(url, identity),
                    self._balance_policy,
                    log_ctx={"provider": self.name, "op": "balance"},
                )
            except (BusinessError, ValueError) as exc:
                log_event(logging.WARNING, "Balance lookup failed", {"provider": self.name}, endpoint=path, error=str(exc)[:200])
                continue
            balance = format_balance(data)
            if balance:
                return balance
        return None

    # ---- 流式生成 ----

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
        self._require_key(identity)
        payload = self._build_payload(model_id, turn_text, attachments, history, system_instruction, config)
        url = self._endpoint(identity)
        headers = self._auth_headers(identity)
        log_ctx = {"provider": self.name, "model": model_id}

        async def attempt() -> None:
            token.raise_if_cancelled()
            accumulated = ""
            try:
                async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                    async with client.stream("POST", url, json=payload, headers=headers) as resp:
                        await ensure_ok(resp, self.name)
                        async for data in iter_sse_payloads(resp.aiter_lines(), token):
                            delta = self._decode_payload(data)
                            if delta.text:
                                accumulated += delta.text
                                on_increment(accumulated, None)
            except httpx.RequestError as e:
                raise network_error(e) from e

        await with_retry(attempt, self._retry_policy, log_ctx=log_ctx)

    # ---- 辅助方法 ----

    def _endpoint(self, identity: ProviderIdentity) -> str:
        return f"{identity.resolved_base_url}/chat/completions"

    def _auth_headers(self, identity: ProviderIdentity) -> Dict[str, str]:
        return bearer_headers(identity.api_key)

    @staticmethod
    def _require_key(identity: ProviderIdentity) -> None:
        if not identity.api_key:
            raise ValidationError(code="MISSING_API_KEY", message="API key not set")

    async def _get_json(self, url: str, identity: ProviderIdentity) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.get(url, headers=self._auth_headers(identity))
        except httpx.RequestError as e:
            raise network_error(e) from e
        await ensure_ok(resp, self.name)
        return resp.json()

    def _build_messages(
        self,
        model_id: str,
        turn_text: str,
        attachments: Sequence[Attachment],
        history: Sequence[Message],
        system_instruction: Optional[str],
        config: GenerationConfig,
    ) -> List[Dict[str, Any]]:
        msgs: List[Dict[str, Any]] = []
        # o1 系列不接受 system 角色
        if system_instruction and not is_o1_model(model_id):
            msgs.append({"role": "system", "content": system_instruction})
        vision = supports_vision(model_id)
        for m in prune_history(history, config.history_limit):
            if not m.content and not m.attachments:
                continue
            role = "user" if m.role is Role.USER else "assistant"
            msgs.append({"role": role, "content": self._content(m.content, m.attachments, vision)})
        msgs.append({"role": "user", "content": self._content(turn_text, attachments, vision)})
        return msgs

    def _build_payload(
        self,
        model_id: str,
        turn_text: str,
        attachments: Sequence[Attachment],
        history: Sequence[Message],
        system_instruction: Optional[str],
        config: GenerationConfig,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model_id,
            "messages": self._build_messages(model_id, turn_text, attachments, history, system_instruction, config),
            "stream": True,
            "temperature": config.temperature,
            "top_p": config.top_p,
        }
        if is_o1_model(model_id):
            payload["temperature"] = 1
        else:
            payload["max_tokens"] = config.max_output_tokens
        return payload

    def _content(self, text: str, attachments: Sequence[Attachment], vision: bool) -> Any:
        """无附件时返回纯文本；否则返回 parts 数组，仅视觉模型保留图片。"""

        if not attachments:
            return text
        parts: List[Dict[str, Any]] = [{"type": "text", "text": text or " "}]
        for att in attachments:
            if vision and att.type is ContentType.IMAGE:
                parts.append({"type": "image_url", "image_url": {"url": att.data}})
            else:
                log_event(
                    logging.WARNING,
                    "Attachment skipped for provider",
                    {"provider": self.name},
                    attachment_type=att.type.value,
                    mime_type=att.mime_type,
                )
        if len(parts) == 1:
            return parts[0]["text"]
        return parts

    def _decode_payload(self, data: Dict[str, Any]) -> StreamDelta:
        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return StreamDelta()
        delta = choices[0].get("delta") or {}
        reasoning = delta.get("reasoning_content")
        if reasoning:
            return StreamDelta(text=wrap_reasoning(reasoning))
        return StreamDelta(text=delta.get("content") or "")
