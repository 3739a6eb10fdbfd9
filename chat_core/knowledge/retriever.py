"""本地参考文档的关键词检索。

纯词法打分，不做向量检索：
1. 查询去标点后按空白切词，保留长度大于 1 的关键词。
2. 每个文档按 800 字符窗口、100 字符重叠切片。
3. 切片得分 = 命中的不同关键词个数（不区分大小写的子串匹配）。
4. 按得分降序稳定排序，取前 15 个切片，在字符预算内拼接。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Sequence

from chat_core.domain.models import KnowledgeFile

CHUNK_SIZE = 800
CHUNK_OVERLAP = 100
MAX_CHUNKS = 15
FALLBACK_CHARS = 2000
DEFAULT_MAX_CHARS = 30000

CONTEXT_HEADER = (
    "[Smart Context Retrieval]\n"
    "The following are relevant document fragments found for the user's query:\n"
)
CONTEXT_FOOTER = "\n\n"

_PUNCTUATION = re.compile(r"[^\w\s\u4e00-\u9fa5]")


@dataclass
class ScoredChunk:
    """一次检索内部使用的打分切片。"""

    file_name: str
    content: str
    score: int

    def render(self) -> str:
        return f"\n--- Fragment from {self.file_name} (Relevance: {self.score}) ---\n{self.content}\n"


def extract_keywords(query: str) -> List[str]:
    """去掉标点并切词，保留长度大于 1 的关键词（去重，保持顺序）。"""

    cleaned = _PUNCTUATION.sub("", (query or "").lower())
    seen: dict[str, None] = {}
    for token in cleaned.split():
        if len(token) > 1:
            seen.setdefault(token, None)
    return list(seen)


def iter_windows(text: str, size: int = CHUNK_SIZE, overlap: int = CHUNK_OVERLAP) -> Iterable[str]:
    step = size - overlap
    start = 0
    while start < len(text):
        yield text[start:start + size]
        start += step


def score_chunks(keywords: Sequence[str], files: Sequence[KnowledgeFile]) -> List[ScoredChunk]:
    """对所有文档切片打分，丢弃零分切片，按得分降序（同分保持出现顺序）。"""

    scored: List[ScoredChunk] = []
    for f in files:
        for window in iter_windows(f.content):
            lower = window.lower()
            score = sum(1 for k in keywords if k in lower)
            if score > 0:
                scored.append(ScoredChunk(file_name=f.name, content=window, score=score))
    scored.sort(key=lambda c: c.score, reverse=True)
    return scored


def retrieve(query: str, files: Sequence[KnowledgeFile], max_chars: int = DEFAULT_MAX_CHARS) -> str:
    """返回不超过 max_chars 的上下文块；没有任何命中时返回空字符串。"""

    if not files:
        return ""

    keywords = extract_keywords(query)
    if not keywords:
        # 查询里没有可用关键词时，退化为每个文档的开头部分
        fallback = "\n\n".join(f.content[:FALLBACK_CHARS] for f in files)
        return fallback[:max_chars]

    budget = max_chars - len(CONTEXT_HEADER) - len(CONTEXT_FOOTER)
    entries: List[str] = []
    used = 0
    for chunk in score_chunks(keywords, files)[:MAX_CHUNKS]:
        entry = chunk.render()
        if used + len(entry) > budget:
            break
        entries.append(entry)
        used += len(entry)

    if not entries:
        return ""
    return CONTEXT_HEADER + "".join(entries) + CONTEXT_FOOTER
