"""统一的对话与 Provider 数据模型。

本模块定义了 chat_core 在不同 Provider 之间共享的标准数据结构：

- Message / Attachment: 一条对话消息及其附件（图片、视频、音频等）。
- GenerationConfig: 单次请求的采样参数，由调用方提供，只读。
- KnowledgeFile: 用户提供的参考文档，供检索模块使用。
- ProviderIdentity: 后端类型 + 凭证 + 基础地址，每次调用显式传入。
- ModelCapability / ModelCatalog: 模型列表接口的统一返回结构。
- CancellationToken: 每个 lane 上正在进行的生成所持有的取消句柄。

所有 Provider 适配器都只依赖这些模型，并负责在各自的 API JSON 和
这些模型之间做转换。
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional
from uuid import uuid4

from chat_core.domain.exceptions import GenerationCancelled


class Role(str, Enum):
    """消息角色。MODEL 对应 OpenAI 系的 assistant。"""

    USER = "user"
    MODEL = "model"
    SYSTEM = "system"


class ContentType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class ProviderKind(str, Enum):
    """用户可选择的后端厂商。"""

    GOOGLE = "google"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    DEEPSEEK = "deepseek"
    ALIBABA = "alibaba"
    TENCENT = "tencent"
    MOONSHOT = "moonshot"
    ZHIPU = "zhipu"
    MINIMAX = "minimax"
    BAICHUAN = "baichuan"
    YI = "yi"
    SILICONFLOW = "siliconflow"
    GROK = "grok"
    OPENROUTER = "openrouter"
    CUSTOM = "custom"


class ProviderFamily(str, Enum):
    """协议族：决定使用哪个适配器分支。"""

    NATIVE = "native"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_message_id() -> str:
    return f"m-{uuid4().hex}"


_ASCII_ONLY = re.compile(r"[^\x00-\x7F]")


@dataclass
class Attachment:
    """消息附件。

    - type: 内容类型（text/image/video/audio）。
    - mime_type: MIME 类型，如 image/png。
    - data: data URI（data:image/png;base64,....）或外部引用 URI。
    """

    type: ContentType
    mime_type: str
    data: str

    @property
    def is_data_uri(self) -> bool:
        return self.data.startswith("data:")

    @property
    def base64_payload(self) -> str:
        """data URI 中逗号之后的 base64 数据；非 data URI 时原样返回。"""

        if "," in self.data and self.is_data_uri:
            return self.data.split(",", 1)[1]
        return self.data

    @property
    def resolved_mime_type(self) -> str:
        if self.mime_type:
            return self.mime_type
        if self.is_data_uri:
            return self.data.split(";", 1)[0].split(":", 1)[1]
        return "application/octet-stream"


@dataclass
class Message:
    """一条对话消息。

    Message 由调用方持有，chat_core 不做持久化。ChatEngine 更新占位消息时
    使用 dataclasses.replace 生成新对象，已交给 sink 的对象不会被原地修改。
    """

    role: Role
    content: str
    id: str = field(default_factory=new_message_id)
    attachments: List[Attachment] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    is_error: bool = False
    is_hidden: bool = False
    is_bookmarked: bool = False
    model_id: Optional[str] = None
    model_name: Optional[str] = None
    grounding_metadata: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class GenerationConfig:
    """采样参数（单次请求内不可变）。"""

    temperature: float = 0.7
    top_p: float = 0.95
    max_output_tokens: int = 8192
    history_limit: int = 20
    enable_search: bool = False


@dataclass
class KnowledgeFile:
    """用户上传的参考文档。

    enabled_lanes 为 None 表示对所有 lane 生效；否则只对集合内的 lane 生效。
    """

    name: str
    content: str
    size: int = 0
    is_active: bool = True
    enabled_lanes: Optional[FrozenSet[str]] = None

    def __post_init__(self) -> None:
        if not self.size:
            self.size = len(self.content)

    def is_enabled_for(self, lane: str) -> bool:
        if not self.is_active:
            return False
        return self.enabled_lanes is None or lane in self.enabled_lanes


@dataclass(frozen=True)
class ProviderIdentity:
    """后端身份：厂商类型 + API Key + 基础地址。

    不可变值对象，每次调用 Provider 时显式传入，替代全局可变 client。
    推荐通过 ProviderIdentity.create 构造，以便统一清洗用户输入。
    """

    kind: ProviderKind
    api_key: str
    base_url: str = ""

    @classmethod
    def create(cls, kind, api_key: Optional[str], base_url: Optional[str] = None) -> "ProviderIdentity":
        """清洗 Key 与 URL 后构造身份。

        - 去掉非 ASCII 字符（中文/全角符号会导致 HTTP 头编码失败）。
        - URL 缺少协议时补 https://，去掉末尾的斜杠。
        - 原生协议族的 URL 去掉末尾的 /v1beta 或 /v1，由客户端自行拼接版本。
        """

        kind = ProviderKind(kind)
        key = _ASCII_ONLY.sub("", api_key or "").strip()
        url = _ASCII_ONLY.sub("", base_url or "").strip()
        if url:
            if not url.startswith("http"):
                url = f"https://{url}"
            url = url.rstrip("/")
            if kind is ProviderKind.GOOGLE:
                url = re.sub(r"/v1beta$", "", url)
                url = re.sub(r"/v1$", "", url)
        return cls(kind=kind, api_key=key, base_url=url)

    @property
    def family(self) -> ProviderFamily:
        if self.kind is ProviderKind.GOOGLE:
            return ProviderFamily.NATIVE
        if self.kind is ProviderKind.ANTHROPIC:
            return ProviderFamily.ANTHROPIC
        return ProviderFamily.OPENAI

    @property
    def resolved_base_url(self) -> str:
        """用户未填写地址时回退到 registry 中的默认地址。"""

        if self.base_url:
            return self.base_url
        from chat_core.providers.registry import get_provider_config

        return get_provider_config(self.kind).base_url


@dataclass
class ModelCapability:
    """模型能力描述，由模型列表接口推断得出。"""

    id: str
    name: str
    provider: ProviderKind
    description: str = ""
    supports_images: bool = False
    supports_video_gen: bool = False
    supports_audio: bool = False
    is_thinking: bool = False
    is_online: bool = False
    context_window: Optional[str] = None


@dataclass
class ModelCatalog:
    """list_models 的统一返回结果。balance 仅供展示，可能为空。"""

    models: List[ModelCapability]
    platform: str
    balance: Optional[str] = None


class CancellationToken:
    """协作式取消句柄。

    生成循环在每次迭代开始前调用 raise_if_cancelled；
    ChatEngine 在应用每个增量前检查 cancelled，丢弃过期输出。
    """

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise GenerationCancelled("generation cancelled")
