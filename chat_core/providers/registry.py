"""Provider 配置。

本模块集中维护每个厂商的默认 API 地址、所属协议族与平台展示名：

- family: 决定使用哪个适配器（原生 Gemini / OpenAI 兼容 / Anthropic 兼容）。
- base_url: 用户未填写时的默认地址，指向 OpenAI 兼容端点的根路径
  （不含 /chat/completions）。
- platform: 模型列表接口返回的平台名称，仅用于展示。
"""

from dataclasses import dataclass
from typing import Mapping, Union

from chat_core.domain.models import ProviderFamily, ProviderKind


@dataclass(frozen=True)
class ProviderConfig:
    """某个厂商的整体配置。"""

    kind: ProviderKind
    display_name: str
    base_url: str
    family: ProviderFamily
    platform: str
    supports_balance: bool = False


def _openai(kind: ProviderKind, display_name: str, base_url: str, platform: str, balance: bool = True) -> ProviderConfig:
    return ProviderConfig(
        kind=kind,
        display_name=display_name,
        base_url=base_url,
        family=ProviderFamily.OPENAI,
        platform=platform,
        supports_balance=balance,
    )


GOOGLE_CONFIG = ProviderConfig(
    kind=ProviderKind.GOOGLE,
    display_name="Google Gemini",
    base_url="https://generativelanguage.googleapis.com",
    family=ProviderFamily.NATIVE,
    platform="Google Gemini",
)

ANTHROPIC_CONFIG = ProviderConfig(
    kind=ProviderKind.ANTHROPIC,
    display_name="Anthropic Claude",
    base_url="https://api.anthropic.com/v1",
    family=ProviderFamily.ANTHROPIC,
    platform="Anthropic",
)

PROVIDER_REGISTRY: Mapping[ProviderKind, ProviderConfig] = {
    ProviderKind.GOOGLE: GOOGLE_CONFIG,
    ProviderKind.OPENAI: _openai(ProviderKind.OPENAI, "OpenAI (官方)", "https://api.openai.com/v1", "OpenAI"),
    ProviderKind.ANTHROPIC: ANTHROPIC_CONFIG,
    ProviderKind.DEEPSEEK: _openai(ProviderKind.DEEPSEEK, "DeepSeek (深度求索)", "https://api.deepseek.com", "DeepSeek"),
    ProviderKind.SILICONFLOW: _openai(
        ProviderKind.SILICONFLOW, "SiliconFlow (硅基流动)", "https://api.siliconflow.cn/v1", "SILICONFLOW"
    ),
    ProviderKind.ALIBABA: _openai(
        ProviderKind.ALIBABA,
        "阿里通义千问 (Dashscope)",
        "https://dashscope.aliyuncs.com/compatible-mode/v1",
        "ALIBABA",
    ),
    ProviderKind.ZHIPU: _openai(ProviderKind.ZHIPU, "智谱 AI (BigModel)", "https://open.bigmodel.cn/api/paas/v4", "ZHIPU"),
    ProviderKind.MOONSHOT: _openai(ProviderKind.MOONSHOT, "月之暗面 (Kimi)", "https://api.moonshot.cn/v1", "MOONSHOT"),
    ProviderKind.YI: _openai(ProviderKind.YI, "零一万物 (Yi)", "https://api.lingyiwanwu.com/v1", "YI"),
    ProviderKind.TENCENT: _openai(
        ProviderKind.TENCENT, "腾讯混元 (Hunyuan)", "https://api.hunyuan.cloud.tencent.com/v1", "TENCENT"
    ),
    ProviderKind.MINIMAX: _openai(ProviderKind.MINIMAX, "MiniMax (海螺)", "https://api.minimax.chat/v1", "MINIMAX"),
    ProviderKind.BAICHUAN: _openai(ProviderKind.BAICHUAN, "百川智能 (Baichuan)", "https://api.baichuan-ai.com/v1", "BAICHUAN"),
    ProviderKind.GROK: _openai(ProviderKind.GROK, "Grok (xAI)", "https://api.x.ai/v1", "GROK"),
    ProviderKind.OPENROUTER: _openai(ProviderKind.OPENROUTER, "OpenRouter", "https://openrouter.ai/api/v1", "OPENROUTER"),
    # OneAPI / 自定义网关未填写地址时回退到 OpenAI 官方端点
    ProviderKind.CUSTOM: _openai(ProviderKind.CUSTOM, "OneAPI / 自定义", "https://api.openai.com/v1", "OneAPI"),
}


def get_provider_config(kind: Union[ProviderKind, str]) -> ProviderConfig:
    """根据厂商类型获取 ProviderConfig，名称不区分大小写。"""

    try:
        key = ProviderKind(str(getattr(kind, "value", kind)).lower())
    except ValueError:
        raise KeyError(f"Unknown provider: {kind!r}") from None
    return PROVIDER_REGISTRY[key]
