"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护厂商默认地址与协议族 (registry)。
- 流式帧解析 (streaming)。
- 提供各协议族的具体实现 (gemini_client、openai_client、anthropic_client)。
"""

from typing import Dict, Optional, Sequence

from chat_core.config.settings import settings
from chat_core.domain.models import (
    Attachment,
    CancellationToken,
    GenerationConfig,
    Message,
    ModelCatalog,
    ProviderFamily,
    ProviderIdentity,
)
from chat_core.providers.anthropic_client import AnthropicClient
from chat_core.providers.base import OnIncrement, ProviderClient
from chat_core.providers.gemini_client import GeminiClient
from chat_core.providers.openai_client import OpenAICompatibleClient


def create_provider(family: ProviderFamily, cfg=settings) -> ProviderClient:
    """根据协议族创建 Provider 客户端实例。"""

    family = ProviderFamily(family)
    if family is ProviderFamily.NATIVE:
        return GeminiClient(cfg)
    if family is ProviderFamily.ANTHROPIC:
        return AnthropicClient(cfg)
    return OpenAICompatibleClient(cfg)


class ProviderAdapter:
    """按 identity.family 把调用分发到对应协议族客户端。

    客户端不持有凭证，可以在多个 lane 之间共享同一个 ProviderAdapter。
    """

    def __init__(self, clients: Optional[Dict[ProviderFamily, ProviderClient]] = None, cfg=settings):
        self._clients: Dict[ProviderFamily, ProviderClient] = dict(clients or {})
        self._settings = cfg

    def client_for(self, identity: ProviderIdentity) -> ProviderClient:
        family = identity.family
        if family not in self._clients:
            self._clients[family] = create_provider(family, self._settings)
        return self._clients[family]

    async def list_models(self, identity: ProviderIdentity) -> ModelCatalog:
        return await self.client_for(identity).list_models(identity)

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
        await self.client_for(identity).stream_generate(
            identity,
            model_id,
            turn_text,
            attachments,
            history,
            system_instruction,
            config,
            on_increment,
            token,
        )


__all__ = [
    "AnthropicClient",
    "GeminiClient",
    "OpenAICompatibleClient",
    "ProviderAdapter",
    "ProviderClient",
    "create_provider",
]
