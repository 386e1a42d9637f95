"""
Dual-Channel Retrieval for the TB guideline corpus

Scores prose and table chunks separately against the query vector,
then merges the two channels after the boost/penalty cascade:

- Scope filtering over chunk scope tags, doc ids and section paths
- Cosine similarity (dot product on unit vectors), stable descending order
- Per-channel caps, forced inclusion quota, dedup by chunk identity
"""

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace

import numpy as np

from src.rag.corpus import Chunk
from src.rag.keywords import SCOPE_FILTER_PATTERNS

logger = logging.getLogger(__name__)


# ============================================
# ScoredCandidate
# ============================================


@dataclass(frozen=True)
class ScoredCandidate:
    """A corpus position with its current relevance score.

    ``adjustments`` names the cascade stages already applied, so no stage
    touches the same candidate twice.
    """

    index: int
    score: float
    adjustments: tuple[str, ...] = ()

    def adjusted(self, score: float, stage: str) -> "ScoredCandidate":
        return replace(self, score=float(score), adjustments=self.adjustments + (stage,))

    def has(self, stage: str) -> bool:
        return stage in self.adjustments


def sort_candidates(candidates: Iterable[ScoredCandidate]) -> list[ScoredCandidate]:
    """Sort by score descending; ties keep their current order."""
    return sorted(candidates, key=lambda c: -c.score)


# ============================================
# Scope Filter
# ============================================


def chunk_matches_scope(chunk: Chunk, scope: str) -> bool:
    s = scope.lower()
    chunk_scope = (chunk.scope or "").strip().lower()
    if chunk_scope:
        return chunk_scope == s

    patterns = SCOPE_FILTER_PATTERNS.get(s)
    if patterns is None:
        return True

    doc_terms, section_terms = patterns
    doc = (chunk.doc_id or "").lower()
    section = chunk.section_path.lower()
    return any(t in doc for t in doc_terms) or any(t in section for t in section_terms)


def filter_indices_by_scope(
    indices: Sequence[int],
    chunks: Sequence[Chunk],
    scope: str | None,
) -> list[int]:
    """Narrow indices to a scope; an empty result is the caller's to widen."""
    if not scope:
        return list(indices)
    return [i for i in indices if chunk_matches_scope(chunks[i], scope)]


def split_channels(
    indices: Sequence[int], chunks: Sequence[Chunk]
) -> tuple[list[int], list[int]]:
    prose = [i for i in indices if not chunks[i].is_table]
    tables = [i for i in indices if chunks[i].is_table]
    return prose, tables


# ============================================
# Similarity Ranker
# ============================================


def rank_channel(
    query_vector: np.ndarray,
    embeddings: np.ndarray,
    indices: Sequence[int],
) -> list[ScoredCandidate]:
    """Dot-product similarity over the shared prefix of query and corpus dims."""
    if not len(indices):
        return []

    dims = min(len(query_vector), embeddings.shape[1])
    idx = np.asarray(indices, dtype=np.intp)
    scores = embeddings[idx, :dims] @ np.asarray(query_vector[:dims], dtype=np.float64)
    order = np.argsort(-scores, kind="stable")
    return [ScoredCandidate(index=int(idx[o]), score=float(scores[o])) for o in order]


# ============================================
# Section Keys
# ============================================

_SECTION_NUMBER = re.compile(r"\b\d+(?:\.\d+)*\b")


def extract_section_keys(section_path: str | None) -> set[str]:
    """Keys for section proximity: full path, each segment, each section number."""
    if not section_path:
        return set()
    s = section_path.lower()
    keys = {s.strip()}
    keys.update(seg.strip() for seg in s.split("|") if seg.strip())
    keys.update(_SECTION_NUMBER.findall(s))
    keys.discard("")
    return keys


# ============================================
# Channel Merge
# ============================================


def resolve_top_k(requested: int, corpus_size: int, max_top_k: int = 8) -> int:
    return max(1, min(requested, max_top_k, corpus_size))


def merge_channels(
    prose: Sequence[ScoredCandidate],
    tables: Sequence[ScoredCandidate],
    chunks: Sequence[Chunk],
    top_k: int,
    guaranteed: Sequence[ScoredCandidate] = (),
    quota: int = 2,
) -> tuple[list[ScoredCandidate], list[int]]:
    """Merge capped channels, force-include guaranteed prose, dedup and truncate.

    Returns the final candidates and the indices that were force-included.
    """
    combined = sort_candidates([*prose, *tables])

    present = {c.index for c in combined}
    forced: list[int] = []
    for cand in guaranteed:
        if len(forced) >= quota:
            break
        if cand.index in present:
            continue
        combined.append(cand)
        present.add(cand.index)
        forced.append(cand.index)
    if forced:
        combined = sort_candidates(combined)

    seen: set[str] = set()
    deduped: list[ScoredCandidate] = []
    for cand in combined:
        key = chunks[cand.index].identity
        if key in seen:
            continue
        seen.add(key)
        deduped.append(cand)

    return deduped[:top_k], forced
