"""单 lane 对话引擎。

负责构建出站请求（历史 + 检索上下文 + 附件）、调用 Provider、
处理取消，并通过调用方提供的 sink 回报增量状态。

并发约定（单线程 asyncio）：
- 每个 lane 同一时刻最多只有一个未取消的 CancellationToken。
- 新的 send 先作废旧 token，再创建新 token。
- 每个增量在应用前检查自己的 token，被顶替的生成不会覆盖新状态。
"""

from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4
import logging
import time

from chat_core.config.settings import settings
from chat_core.domain.error_translator import translate
from chat_core.domain.exceptions import GenerationCancelled, ValidationError
from chat_core.domain.models import (
    Attachment,
    CancellationToken,
    GenerationConfig,
    KnowledgeFile,
    Message,
    ProviderIdentity,
    Role,
    utcnow,
)
from chat_core.infrastructure.logging.logger import log_event
from chat_core.knowledge.retriever import retrieve
from chat_core.prompts import DEFAULT_SYSTEM_INSTRUCTION
from chat_core.providers.base import ProviderClient

Sink = Callable[[List[Message]], None]


class LaneState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    CANCELLING = "cancelling"


class ChatEngine:
    def __init__(
        self,
        adapter: ProviderClient,
        identity: ProviderIdentity,
        lane: str = "left",
        system_instruction: Optional[str] = None,
        generation_config: Optional[GenerationConfig] = None,
        knowledge_files: Sequence[KnowledgeFile] = (),
        retrieval_max_chars: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._adapter = adapter
        self.identity = identity
        self.lane = lane
        self.system_instruction = DEFAULT_SYSTEM_INSTRUCTION if system_instruction is None else system_instruction
        self.generation_config = generation_config or GenerationConfig()
        self.knowledge_files = list(knowledge_files)
        self.retrieval_max_chars = settings.retrieval_max_chars if retrieval_max_chars is None else retrieval_max_chars
        self._clock = clock
        self._token: Optional[CancellationToken] = None
        self._state = LaneState.IDLE

    @property
    def state(self) -> LaneState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._state is not LaneState.IDLE

    def stop(self) -> None:
        """作废当前 token（若有）。可重复调用。"""

        if self._token is None:
            return
        self._token.cancel()
        self._state = LaneState.CANCELLING
        log_event(logging.INFO, "Stop requested", {"lane": self.lane})

    async def send(
        self,
        turn_text: str,
        attachments: Sequence[Attachment],
        history: Sequence[Message],
        model_id: str,
        model_name: Optional[str],
        sink: Sink,
        hidden: bool = False,
    ) -> None:
        """发送一轮用户消息并流式更新占位回复。

        Args:
            turn_text: 本轮用户输入
            attachments: 本轮附件
            history: 本轮之前的历史消息（不含本轮）
            model_id: 模型 ID
            model_name: 模型展示名，写入回复消息
            sink: 每次状态变化时接收完整消息列表
            hidden: 是否为隐藏的用户消息（对战转发使用）

        Raises:
            ValidationError: 未选择模型
            BusinessError 等: 生成失败（占位消息已标记为错误）
        """
        if not model_id:
            raise ValidationError(code="MODEL_NOT_SELECTED", message="未选择模型")

        start_time = time.time()
        trace_id = f"tr-{uuid4().hex}"
        log_ctx: Dict[str, Any] = {
            "trace_id": trace_id,
            "lane": self.lane,
            "provider": self.identity.kind.value,
            "model": model_id,
        }
        attachments = list(attachments or [])

        # 1. 乐观更新：用户消息 + 空的占位回复
        user_msg = Message(
            role=Role.USER,
            content=turn_text,
            attachments=attachments,
            created_at=self._clock(),
            is_hidden=hidden,
        )
        placeholder = Message(
            role=Role.MODEL,
            content="",
            created_at=self._clock(),
            model_id=model_id,
            model_name=model_name,
        )
        base = list(history) + [user_msg]
        current = placeholder
        sink(base + [current])

        # 2. 检索上下文拼入 system instruction（在占用 lane 之前完成）
        system_instruction = self._build_system_instruction(turn_text, log_ctx)

        # 3. 先作废旧 token 再创建新 token
        token = self._supersede()

        def apply(text: str, metadata: Optional[dict] = None, generated: Optional[Sequence[Attachment]] = None) -> None:
            nonlocal current
            if token.cancelled:
                return
            current = replace(
                current,
                content=text,
                grounding_metadata=metadata or current.grounding_metadata,
                attachments=list(generated) if generated else current.attachments,
            )
            sink(base + [current])

        log_event(logging.INFO, "Generation started", log_ctx, history=len(history), attachments=len(attachments))
        try:
            await self._adapter.stream_generate(
                self.identity,
                model_id,
                turn_text,
                attachments,
                list(history),
                system_instruction,
                self.generation_config,
                apply,
                token,
            )
        except GenerationCancelled:
            log_event(logging.INFO, "Generation cancelled", log_ctx)
        except Exception as exc:
            if token.cancelled:
                # 已被顶替或停止，迟到的失败同样按取消处理
                log_event(logging.INFO, "Cancelled generation failed late", log_ctx, error=str(exc)[:200])
                return
            current = replace(current, is_error=True, content=translate(exc))
            sink(base + [current])
            log_event(logging.ERROR, "Generation failed", log_ctx, error=str(exc)[:500])
            raise
        else:
            log_event(
                logging.INFO,
                "Generation completed",
                log_ctx,
                elapsed_seconds=round(time.time() - start_time, 2),
                chars=len(current.content),
            )
        finally:
            if self._token is token:
                self._token = None
                self._state = LaneState.IDLE

    async def regenerate(
        self,
        history: Sequence[Message],
        model_id: str,
        model_name: Optional[str],
        sink: Sink,
    ) -> None:
        """丢弃最后一条模型回复，用上一条用户消息重新生成。"""

        if len(history) < 2 or history[-1].role is not Role.MODEL or history[-2].role is not Role.USER:
            log_event(logging.INFO, "Nothing to regenerate", {"lane": self.lane})
            return
        without_reply = list(history[:-1])
        sink(without_reply)
        last_user = without_reply[-1]
        await self.send(
            last_user.content,
            last_user.attachments,
            without_reply[:-1],
            model_id,
            model_name,
            sink,
            hidden=last_user.is_hidden,
        )

    def _supersede(self) -> CancellationToken:
        previous = self._token
        if previous is not None:
            previous.cancel()
        token = CancellationToken()
        self._token = token
        self._state = LaneState.GENERATING
        return token

    def _build_system_instruction(self, turn_text: str, log_ctx: Dict[str, Any]) -> Optional[str]:
        instruction = self.system_instruction or ""
        files = [f for f in self.knowledge_files if f.is_enabled_for(self.lane)]
        if files:
            context = retrieve(turn_text, files, self.retrieval_max_chars)
            if context:
                instruction = f"{instruction}\n\n{context}\nUser Question: {turn_text}"
            log_event(logging.INFO, "Knowledge retrieval", log_ctx, files=len(files), context_chars=len(context))
        return instruction or None
