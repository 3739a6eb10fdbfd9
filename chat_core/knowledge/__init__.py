"""Local knowledge-file retrieval."""

from .retriever import ScoredChunk, extract_keywords, retrieve, score_chunks

__all__ = ["ScoredChunk", "extract_keywords", "retrieve", "score_chunks"]
