"""
TB RAG Module

Corpus loading, intent classification, dual-channel ranking, the
boost/penalty cascade, and table rendering.
"""

from src.rag.cache import CacheManager
from src.rag.corpus import Chunk, CorpusData, CorpusStore, StoreUnavailableError
from src.rag.embedding import (
    EmbeddingProviderError,
    LocalEmbeddingGenerator,
    OpenAIEmbeddingClient,
    create_embedder,
)
from src.rag.intent import classify_intent, infer_population_context, resolve_scope
from src.rag.profile import DEFAULT_PROFILE, CorpusProfile, load_profile
from src.rag.tables import TableSubtype, enrich_table_chunk, render_table

__all__ = [
    # Corpus
    "Chunk",
    "CorpusData",
    "CorpusStore",
    "StoreUnavailableError",
    # Embedding
    "EmbeddingProviderError",
    "LocalEmbeddingGenerator",
    "OpenAIEmbeddingClient",
    "create_embedder",
    # Intent
    "classify_intent",
    "infer_population_context",
    "resolve_scope",
    # Profile
    "CorpusProfile",
    "DEFAULT_PROFILE",
    "load_profile",
    # Tables
    "TableSubtype",
    "enrich_table_chunk",
    "render_table",
    # Cache
    "CacheManager",
]
