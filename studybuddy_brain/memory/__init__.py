"""Conversational memory: records, persistence, ranking and retrieval."""

from .backends import InMemoryBackend, MemoryBackend, SQLiteBackend, backend_from_settings
from .embedder import QueryEmbedder
from .records import MemoryRecord, RetrievalResult, ScoredMemory, natural_key
from .retriever import CONTEXT_LEVELS, ContextBundle, MemoryRetriever
from .store import MemoryStore

__all__ = [
    "CONTEXT_LEVELS",
    "ContextBundle",
    "InMemoryBackend",
    "MemoryBackend",
    "MemoryRecord",
    "MemoryRetriever",
    "MemoryStore",
    "QueryEmbedder",
    "RetrievalResult",
    "SQLiteBackend",
    "ScoredMemory",
    "backend_from_settings",
    "natural_key",
]
