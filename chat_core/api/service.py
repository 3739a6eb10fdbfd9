"""对外 API 服务模块。

提供简化的函数接口供上层应用调用：
- 从配置构造 ProviderIdentity 与 GenerationConfig
- 拉取模型目录（含余额）
- 组装共享同一个 ProviderAdapter 的双 lane 编排器
"""

from typing import Optional, Sequence

from chat_core.agents.chat_engine import ChatEngine
from chat_core.agents.dual_lane import DualLaneOrchestrator, OnError, OnUpdate
from chat_core.config.settings import settings
from chat_core.domain.error_translator import translate
from chat_core.domain.exceptions import BusinessError
from chat_core.domain.models import (
    GenerationConfig,
    KnowledgeFile,
    ModelCatalog,
    ProviderIdentity,
    ProviderKind,
)
from chat_core.infrastructure.logging.logger import logger
from chat_core.prompts import load_system_prompt
from chat_core.providers import ProviderAdapter


def identity_from_settings(cfg=settings) -> ProviderIdentity:
    return ProviderIdentity.create(ProviderKind(cfg.default_provider), cfg.api_key, cfg.base_url)


def generation_config_from_settings(cfg=settings) -> GenerationConfig:
    return GenerationConfig(
        temperature=cfg.temperature,
        top_p=cfg.top_p,
        max_output_tokens=cfg.max_output_tokens,
        history_limit=cfg.history_limit,
        enable_search=cfg.enable_search,
    )


async def fetch_models(identity: Optional[ProviderIdentity] = None) -> ModelCatalog:
    """拉取当前凭证可用的模型目录。

    未配置 API Key 时直接返回空目录。

    Raises:
        BusinessError: 拉取失败，message 为翻译后的中文提示
    """
    identity = identity or identity_from_settings()
    if not identity.api_key:
        return ModelCatalog(models=[], platform="Unknown")
    try:
        return await ProviderAdapter().list_models(identity)
    except Exception as exc:
        logger.error(
            "Fetch models failed",
            extra={"extra": {"provider": identity.kind.value, "error": str(exc)[:500]}},
        )
        raise BusinessError(code="MODEL_LIST_FAILED", message=translate(exc)) from exc


def create_dual_lane(
    identity: Optional[ProviderIdentity] = None,
    knowledge_files: Sequence[KnowledgeFile] = (),
    on_update: Optional[OnUpdate] = None,
    on_error: Optional[OnError] = None,
) -> DualLaneOrchestrator:
    identity = identity or identity_from_settings()
    adapter = ProviderAdapter()
    config = generation_config_from_settings()
    system_instruction = load_system_prompt(settings.system_prompt_preset)
    engines = [
        ChatEngine(
            adapter,
            identity,
            lane=lane,
            system_instruction=system_instruction,
            generation_config=config,
            knowledge_files=knowledge_files,
        )
        for lane in ("left", "right")
    ]
    return DualLaneOrchestrator(engines[0], engines[1], on_update=on_update, on_error=on_error)
