"""流式响应帧解析。

三个协议族的流式响应都是按行分隔的 `data: {...}` 帧（Gemini 通过 alt=sse）。
这里只负责 JSON 解码这一层："任意形状"的宽容只存在于此，
各客户端再把 payload 解码为统一的 StreamDelta。
"""

import json
import re
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional, Tuple

from chat_core.domain.models import CancellationToken

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"

_THINK_BLOCK = re.compile(r"<think>(.*?)</think>", re.DOTALL)


@dataclass
class StreamDelta:
    """单帧解码后的统一增量。"""

    text: str = ""
    metadata: Optional[Dict[str, Any]] = None


def parse_sse_line(line: str) -> Optional[Dict[str, Any]]:
    """解析单行 SSE 数据帧。

    非 data 行、空帧、[DONE] 结束标记以及非法 JSON 均返回 None（跳过）。
    """

    if not line or not line.startswith(DATA_PREFIX):
        return None
    data_str = line[len(DATA_PREFIX):].strip()
    if not data_str or data_str == DONE_SENTINEL:
        return None
    try:
        payload = json.loads(data_str)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    return payload


async def iter_sse_payloads(
    lines: AsyncIterator[str], token: CancellationToken
) -> AsyncIterator[Dict[str, Any]]:
    """逐行读取并产出 JSON payload，每次迭代前检查取消。"""

    async for line in lines:
        token.raise_if_cancelled()
        payload = parse_sse_line(line)
        if payload is not None:
            yield payload


def wrap_reasoning(text: str) -> str:
    return f"{THINK_OPEN}{text}{THINK_CLOSE}"


def split_reasoning(text: str) -> Tuple[str, str]:
    """把 <think>...</think> 推理片段与正文分离，返回 (推理, 正文)。"""

    parts = _THINK_BLOCK.findall(text or "")
    reasoning = "".join(parts).strip()
    answer = _THINK_BLOCK.sub("", text or "").strip()
    return reasoning, answer
