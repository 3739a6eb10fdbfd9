"""Chat Core 顶层包。

该包提供多 Provider 流式对话网关的核心实现，
包括配置加载、领域模型、Provider 协议适配、传输重试、
错误翻译、本地知识检索、单 lane 对话引擎与双 lane 编排。
"""

from chat_core.agents.chat_engine import ChatEngine, LaneState
from chat_core.agents.dual_lane import DualLaneOrchestrator
from chat_core.providers import ProviderAdapter

__all__ = ["ChatEngine", "DualLaneOrchestrator", "LaneState", "ProviderAdapter"]
