"""系统提示词预设加载工具。

按语言(locale) 从 prompts/<locale> 目录读取对应预设的 system prompt 文本，
作为 ChatEngine 的默认 system_instruction。
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List


PROMPTS_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class PromptPreset:
    id: str
    name: str
    description: str

    @property
    def content(self) -> str:
        return load_system_prompt(self.id)


PRESETS: List[PromptPreset] = [
    PromptPreset(id="default", name="默认助手", description="通用的 AI 助手"),
    PromptPreset(id="translator", name="中英翻译官", description="专业的翻译人员"),
    PromptPreset(id="coder", name="代码专家", description="精通各类编程语言"),
    PromptPreset(id="writer", name="文案写手", description="擅长小红书/营销文案"),
    PromptPreset(id="academic", name="学术润色", description="论文写作与润色"),
]


def load_system_prompt(preset_id: str = "default", locale: str = "zh") -> str:
    """根据预设 ID 和语言加载系统提示词文本。

    未登记的预设 ID 抛出 KeyError。
    """

    if preset_id not in {p.id for p in PRESETS}:
        raise KeyError(f"Unknown prompt preset: {preset_id!r}")
    fname = PROMPTS_DIR / locale / f"{preset_id}.md"
    return fname.read_text(encoding="utf-8").strip()


def list_presets() -> List[PromptPreset]:
    return list(PRESETS)


DEFAULT_SYSTEM_INSTRUCTION = load_system_prompt("default")
