"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级依次降低。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class ChatSettings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    default_provider: str = Field(
        default="google",
        description="默认使用的厂商，例如 google、openai、anthropic、deepseek",
    )
    api_key: Optional[str] = Field(default=None, description="当前启用的 API 密钥")
    base_url: Optional[str] = Field(
        default=None,
        description="自定义 API 基础URL，留空则使用 registry 中的默认地址",
    )
    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 生成参数 ----
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    top_p: float = Field(default=0.95, ge=0.0, le=1.0)
    max_output_tokens: int = Field(default=8192, ge=1)
    history_limit: int = Field(default=20, ge=1, le=200, description="发送给模型的最大历史消息数")
    enable_search: bool = Field(default=False, description="是否启用原生联网搜索（仅 Google）")
    system_prompt_preset: str = Field(default="default", description="默认系统提示词预设")

    # ---- 重试 ----
    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_base_delay: float = Field(default=1.0, ge=0.0, description="指数退避基础间隔（秒）")
    balance_retry_attempts: int = Field(default=2, ge=1, le=10, description="余额查询的重试次数")

    # ---- 检索与对战 ----
    retrieval_max_chars: int = Field(default=30000, ge=1000, description="检索上下文最大字符数")
    auto_battle_cooldown: float = Field(default=1.0, ge=0.0, description="自动对战每轮间隔（秒）")
    video_poll_interval: float = Field(default=5.0, ge=0.0, description="视频生成轮询间隔（秒）")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_prefix="CHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v.strip()) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("default_provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        from chat_core.domain.models import ProviderKind

        name = v.strip().lower()
        if name not in {k.value for k in ProviderKind}:
            raise ValueError(f"Unknown provider: {v!r}")
        return name

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = ChatSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = ChatSettings
