"""
Toolgate RAG (Retrieval-Augmented Generation) module.

Weighted retrieval across several knowledge bases and the
knowledge_search tool built on it.
"""

from toolgate.rag.retrieval import (
    HttpKnowledgeSearcher,
    KnowledgeSearcher,
    NoSourceConfiguredError,
    SearchResult,
    WeightedRetriever,
    build_context,
)
from toolgate.rag.tools import KnowledgeToolset, register_knowledge_tools

__all__ = [
    "HttpKnowledgeSearcher",
    "KnowledgeSearcher",
    "NoSourceConfiguredError",
    "SearchResult",
    "WeightedRetriever",
    "build_context",
    "KnowledgeToolset",
    "register_knowledge_tools",
]
