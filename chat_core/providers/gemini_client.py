"""Google Gemini 原生协议适配器（REST）。

- 模型列表: GET {base}/v1beta/models?key=...
- 流式对话: POST {base}/v1beta/models/{model}:streamGenerateContent?alt=sse&key=...
- 图片生成: POST {base}/v1beta/models/{model}:generateContent（返回 inlineData 图片）
- 视频生成: POST {base}/v1beta/models/{model}:predictLongRunning，然后轮询 operation

原生协议要求 user/model 角色严格交替，否则直接拒绝请求，
因此历史消息在发送前经过 normalize_history 修复。
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ApiError, ValidationError
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
from chat_core.providers.base import OnIncrement, ensure_ok, network_error, prune_history
from chat_core.providers.registry import GOOGLE_CONFIG
from chat_core.providers.streaming import StreamDelta, iter_sse_payloads

API_VERSION = "v1beta"
FILLER_TEXT = "..."
SUPPORTED_MODEL_PREFIXES = ("gemini", "veo")


def is_video_model(model_id: str) -> bool:
    return "veo" in model_id or "video" in model_id


def is_image_model(model_id: str) -> bool:
    return "image" in model_id


def _opposite(role: str) -> str:
    return "model" if role == "user" else "user"


def build_parts(text: str, attachments: Sequence[Attachment]) -> List[Dict[str, Any]]:
    """把文本与附件转换为 Gemini parts 列表。

    data URI 附件走 inlineData（base64 + MIME），外部 URI 走 fileData。
    纯空白文本保留为一个空格 part，完全为空则返回空列表。
    """

    parts: List[Dict[str, Any]] = []
    if text and text.strip():
        parts.append({"text": text})
    for att in attachments or ():
        if att.is_data_uri:
            parts.append({"inlineData": {"data": att.base64_payload, "mimeType": att.resolved_mime_type}})
        else:
            parts.append({"fileData": {"fileUri": att.data, "mimeType": att.resolved_mime_type}})
    if not parts and text:
        parts.append({"text": " "})
    return parts


def normalize_history(messages: Sequence[Message]) -> List[Dict[str, Any]]:
    """把历史消息转换为严格交替的 contents 列表。

    - 出错消息与 system 消息被丢弃，没有任何内容的消息被跳过。
    - 相邻两条角色相同时，先插入一条相反角色的占位消息。
    - 结果以 user 结尾时，追加一条 model 占位消息，
      保证随后追加的本轮 user 消息仍然交替。
    """

    contents: List[Dict[str, Any]] = []
    for m in messages:
        if m.is_error or m.role is Role.SYSTEM:
            continue
        role = "user" if m.role is Role.USER else "model"
        parts = build_parts(m.content, m.attachments)
        if not parts:
            continue
        if contents and contents[-1]["role"] == role:
            contents.append({"role": _opposite(role), "parts": [{"text": FILLER_TEXT}]})
        contents.append({"role": role, "parts": parts})
    if contents and contents[-1]["role"] == "user":
        contents.append({"role": "model", "parts": [{"text": FILLER_TEXT}]})
    return contents


def build_capability(raw: Dict[str, Any]) -> ModelCapability:
    model_id = str(raw.get("name", "")).replace("models/", "")
    methods = raw.get("supportedGenerationMethods") or []
    input_limit = raw.get("inputTokenLimit") or 0
    can_generate = "generateContent" in methods
    video_gen = "veo" in model_id
    description = raw.get("description")
    return ModelCapability(
        id=model_id,
        name=raw.get("displayName") or model_id,
        provider=GOOGLE_CONFIG.kind,
        description=f"{description[:60]}..." if description else "Google 官方模型",
        supports_images=input_limit > 0 and can_generate and not video_gen,
        supports_video_gen=video_gen,
        supports_audio="audio" in model_id or "native" in model_id or can_generate,
        is_thinking="thinking" in model_id,
        context_window=f"{round(input_limit / 1000)}k" if input_limit else None,
    )


class GeminiClient:
    """Gemini 原生协议客户端实现。"""

    name = "google"
    family = ProviderFamily.NATIVE

    def __init__(
        self,
        cfg=settings,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self._settings = cfg
        self._retry_policy = retry_policy or RetryPolicy.from_settings(cfg)
        self._sleep = sleep or asyncio.sleep

    # ---- 模型列表 ----

    async def list_models(self, identity: ProviderIdentity) -> ModelCatalog:
        self._require_key(identity)
        url = f"{identity.resolved_base_url}/{API_VERSION}/models"
        data = await with_retry(
            lambda: self._request_json("GET", url, identity, params={"pageSize": 1000}),
            self._retry_policy,
            log_ctx={"provider": self.name, "op": "list_models"},
        )
        raw_models = data.get("models") if isinstance(data, dict) else None
        if not raw_models:
            return ModelCatalog(models=[], platform=GOOGLE_CONFIG.platform)
        models = [
            build_capability(m)
            for m in raw_models
            if isinstance(m, dict) and any(p in str(m.get("name", "")) for p in SUPPORTED_MODEL_PREFIXES)
        ]
        # 稳定排序：pro 系列排在前面，其余保持接口返回顺序
        models.sort(key=lambda c: 0 if "pro" in c.id else 1)
        return ModelCatalog(models=models, platform=GOOGLE_CONFIG.platform)

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
        if is_video_model(model_id):
            await self.generate_video(identity, model_id, turn_text, on_increment, token)
            return
        if is_image_model(model_id):
            await self.generate_image(identity, model_id, turn_text, on_increment, token)
            return

        parts = build_parts(turn_text, attachments)
        if not parts:
            raise ValidationError(code="EMPTY_MESSAGE", message="Cannot send empty message")
        contents = normalize_history(prune_history(history, config.history_limit))
        contents.append({"role": "user", "parts": parts})
        body = self._build_body(contents, system_instruction, config)
        url = f"{identity.resolved_base_url}/{API_VERSION}/models/{model_id}:streamGenerateContent"
        params = {"alt": "sse", "key": identity.api_key}

        async def attempt() -> None:
            token.raise_if_cancelled()
            accumulated = ""
            metadata: Optional[Dict[str, Any]] = None
            try:
                async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                    async with client.stream("POST", url, params=params, json=body) as resp:
                        await ensure_ok(resp, self.name)
                        async for data in iter_sse_payloads(resp.aiter_lines(), token):
                            delta = self._decode_payload(data)
                            accumulated += delta.text
                            # 引用元数据整体替换，不做字段级合并
                            if delta.metadata:
                                metadata = delta.metadata
                            on_increment(accumulated, metadata)
            except httpx.RequestError as e:
                raise network_error(e) from e

        await with_retry(attempt, self._retry_policy, log_ctx={"provider": self.name, "model": model_id})

    # ---- 媒体生成 ----

    async def generate_image(
        self,
        identity: ProviderIdentity,
        model_id: str,
        prompt: str,
        on_increment: OnIncrement,
        token: CancellationToken,
    ) -> None:
        token.raise_if_cancelled()
        url = f"{identity.resolved_base_url}/{API_VERSION}/models/{model_id}:generateContent"
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseModalities": ["TEXT", "IMAGE"],
                "imageConfig": {"aspectRatio": "1:1", "imageSize": "1K"},
            },
        }
        data = await with_retry(
            lambda: self._request_json("POST", url, identity, json=body),
            self._retry_policy,
            log_ctx={"provider": self.name, "model": model_id, "op": "image"},
        )
        token.raise_if_cancelled()
        text = ""
        images: List[Attachment] = []
        candidates = (data.get("candidates") if isinstance(data, dict) else None) or []
        parts = ((candidates[0].get("content") or {}).get("parts") or []) if candidates else []
        for part in parts:
            inline = part.get("inlineData")
            if inline:
                mime = inline.get("mimeType") or "image/png"
                images.append(
                    Attachment(type=ContentType.IMAGE, mime_type=mime, data=f"data:{mime};base64,{inline.get('data', '')}")
                )
            elif part.get("text"):
                text += part["text"]
        on_increment(text or "Image Generated", None, images)

    async def generate_video(
        self,
        identity: ProviderIdentity,
        model_id: str,
        prompt: str,
        on_increment: OnIncrement,
        token: CancellationToken,
    ) -> None:
        """提交视频生成任务并轮询直到完成。

        生成的视频以外部 URI 附件的形式返回，下载时需要调用方自行附带 key。
        """

        token.raise_if_cancelled()
        base = identity.resolved_base_url
        url = f"{base}/{API_VERSION}/models/{model_id}:predictLongRunning"
        body = {
            "instances": [{"prompt": prompt}],
            "parameters": {"aspectRatio": "16:9", "resolution": "720p"},
        }
        log_ctx = {"provider": self.name, "model": model_id, "op": "video"}
        operation = await with_retry(
            lambda: self._request_json("POST", url, identity, json=body), self._retry_policy, log_ctx=log_ctx
        )
        op_name = operation.get("name", "")
        log_event(logging.INFO, "Video operation started", log_ctx, operation=op_name)
        while not operation.get("done"):
            await self._sleep(self._settings.video_poll_interval)
            token.raise_if_cancelled()
            operation = await with_retry(
                lambda: self._request_json("GET", f"{base}/{API_VERSION}/{op_name}", identity),
                self._retry_policy,
                log_ctx=log_ctx,
            )
        if operation.get("error"):
            err = operation["error"]
            raise ApiError(code="VIDEO_FAILED", message=f"HTTP Error {err.get('code', 500)}: {err.get('message', '')}")
        samples = (
            ((operation.get("response") or {}).get("generateVideoResponse") or {}).get("generatedSamples") or []
        )
        uri = ((samples[0].get("video") or {}).get("uri")) if samples else None
        if not uri:
            raise ApiError(code="VIDEO_FAILED", message="Video generation failed")
        video = Attachment(type=ContentType.VIDEO, mime_type="video/mp4", data=uri)
        on_increment(f"Generated Video: {prompt}", None, [video])

    # ---- 辅助方法 ----

    @staticmethod
    def _require_key(identity: ProviderIdentity) -> None:
        if not identity.api_key:
            raise ValidationError(code="MISSING_API_KEY", message="Google API 未初始化：请检查 API Key")

    @staticmethod
    def _build_body(
        contents: List[Dict[str, Any]], system_instruction: Optional[str], config: GenerationConfig
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": config.temperature,
                "topP": config.top_p,
                "maxOutputTokens": config.max_output_tokens,
            },
        }
        if system_instruction:
            body["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        if config.enable_search:
            body["tools"] = [{"googleSearch": {}}]
        return body

    async def _request_json(self, method: str, url: str, identity: ProviderIdentity, **kwargs) -> Any:
        params = dict(kwargs.pop("params", None) or {})
        params["key"] = identity.api_key
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.request(method, url, params=params, **kwargs)
        except httpx.RequestError as e:
            raise network_error(e) from e
        await ensure_ok(resp, self.name)
        return resp.json()

    @staticmethod
    def _decode_payload(data: Dict[str, Any]) -> StreamDelta:
        err = data.get("error")
        if isinstance(err, dict):
            raise ApiError(
                code="API_ERROR",
                message=f"HTTP Error {err.get('code', 500)}: {err.get('message', '')}",
                http_status=int(err.get("code") or 500),
            )
        candidates = data.get("candidates") or []
        if not candidates or not isinstance(candidates[0], dict):
            return StreamDelta()
        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(
            p.get("text", "") for p in parts if isinstance(p, dict) and not p.get("thought")
        )
        return StreamDelta(text=text, metadata=candidate.get("groundingMetadata") or None)
