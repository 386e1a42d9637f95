"""
Corpus Store for the TB guideline index

Loads the chunk manifest (``chunks.jsonl``) and its embedding matrix
(``embeddings.json`` or ``embeddings.npy``) once per process. Vectors are
unit-normalized at load time so similarity is a plain dot product.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)

# ============================================
# Constants
# ============================================

RAG_DIR = os.environ.get("RAG_DIR", "public/rag")

CHUNKS_FILENAME = "chunks.jsonl"
EMBEDDINGS_JSON_FILENAME = "embeddings.json"
EMBEDDINGS_NPY_FILENAME = "embeddings.npy"

LFS_POINTER_PREFIX = "version https://git-lfs.github.com/spec/v1"

_CHUNK_FIELDS = (
    "chunk_id",
    "doc_id",
    "guideline_title",
    "year",
    "section_path",
    "scope",
    "content_type",
    "text",
    "attachment_id",
    "attachment_path",
    "caption",
    "table_subtype",
)


class StoreUnavailableError(Exception):
    """Raised when the manifest or embedding source cannot be read."""


# ============================================
# Chunk
# ============================================


@dataclass(frozen=True)
class Chunk:
    """One retrievable unit of guideline content (prose passage or table)."""

    position: int
    chunk_id: str | None = None
    doc_id: str | None = None
    guideline_title: str | None = None
    year: int | str | None = None
    section_path: str = ""
    scope: str | None = None
    content_type: str | None = None
    text: str = ""
    attachment_id: str | None = None
    attachment_path: str | None = None
    caption: str | None = None
    table_subtype: str | None = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_record(cls, record: dict[str, Any], position: int) -> "Chunk":
        values = {name: record.get(name) for name in _CHUNK_FIELDS}
        metadata = record.get("metadata")
        if values["table_subtype"] is None and isinstance(metadata, dict):
            values["table_subtype"] = metadata.get("table_subtype")
        if values["chunk_id"] is not None:
            values["chunk_id"] = str(values["chunk_id"])
        values["section_path"] = values["section_path"] or ""
        values["text"] = values["text"] or ""
        extra = {k: v for k, v in record.items() if k not in _CHUNK_FIELDS}
        return cls(position=position, extra=extra, **values)

    @property
    def is_table(self) -> bool:
        return (self.content_type or "").lower() == "table"

    @property
    def identity(self) -> str:
        """Deduplication key: the chunk id, or doc id plus manifest position."""
        if self.chunk_id:
            return self.chunk_id
        return f"{self.doc_id or ''}#{self.position}"


# ============================================
# Vector Normalization
# ============================================


def normalize_matrix(matrix: Any) -> np.ndarray:
    """Scale each row to unit L2 norm; degenerate or non-finite rows become zero."""
    arr = np.asarray(matrix, dtype=np.float64)
    if arr.ndim != 2:
        raise ValueError(f"Expected a 2-D embedding matrix, got shape {arr.shape}")
    with np.errstate(invalid="ignore", over="ignore"):
        norms = np.linalg.norm(arr, axis=1)
    valid = np.isfinite(norms) & (norms > 0)
    out = np.zeros_like(arr)
    out[valid] = arr[valid] / norms[valid, None]
    return out


def normalize_vector(vector: Any) -> np.ndarray:
    return normalize_matrix(np.asarray(vector, dtype=np.float64).reshape(1, -1))[0]


# ============================================
# Loading
# ============================================


@dataclass(frozen=True)
class CorpusData:
    chunks: tuple[Chunk, ...]
    embeddings: np.ndarray

    @property
    def size(self) -> int:
        """Number of positions that have both a chunk and an embedding."""
        return min(len(self.chunks), len(self.embeddings))

    @property
    def dimensions(self) -> int | None:
        if not len(self.embeddings):
            return None
        return int(self.embeddings.shape[1])


def read_chunks(path: Path) -> list[Chunk]:
    if not path.exists():
        raise StoreUnavailableError(f"Chunk manifest not found at {path}")

    chunks: list[Chunk] = []
    try:
        with path.open(encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError as e:
                    raise StoreUnavailableError(
                        f"Malformed manifest line {line_no} in {path}: {e}"
                    ) from e
                if not isinstance(record, dict):
                    raise StoreUnavailableError(
                        f"Manifest line {line_no} in {path} is not an object"
                    )
                chunks.append(Chunk.from_record(record, position=len(chunks)))
    except UnicodeDecodeError as e:
        raise StoreUnavailableError(f"Chunk manifest {path} is not valid UTF-8: {e}") from e
    return chunks


def _read_json_embeddings(path: Path) -> np.ndarray | None:
    try:
        raw = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        logger.warning(
            "%s is not valid UTF-8 (%s); falling back to %s",
            path.name,
            e,
            EMBEDDINGS_NPY_FILENAME,
        )
        return None
    if raw.lstrip().startswith(LFS_POINTER_PREFIX):
        logger.warning(
            "%s appears to be a Git LFS pointer; falling back to %s",
            path.name,
            EMBEDDINGS_NPY_FILENAME,
        )
        return None
    try:
        arr = np.asarray(json.loads(raw), dtype=np.float64)
    except (json.JSONDecodeError, ValueError, TypeError) as e:
        logger.warning(
            "Failed to parse %s (%s); falling back to %s",
            path.name,
            e,
            EMBEDDINGS_NPY_FILENAME,
        )
        return None
    if arr.size == 0:
        return np.zeros((0, 0))
    if arr.ndim != 2:
        logger.warning(
            "%s has shape %s, expected 2-D; falling back to %s",
            path.name,
            arr.shape,
            EMBEDDINGS_NPY_FILENAME,
        )
        return None
    return arr


def read_embeddings(rag_dir: Path) -> np.ndarray:
    """Read the raw embedding matrix, preferring JSON and falling back to .npy."""
    json_path = rag_dir / EMBEDDINGS_JSON_FILENAME
    npy_path = rag_dir / EMBEDDINGS_NPY_FILENAME

    if json_path.exists():
        arr = _read_json_embeddings(json_path)
        if arr is not None:
            return arr

    if npy_path.exists():
        try:
            arr = np.load(npy_path, allow_pickle=False)
        except (OSError, ValueError) as e:
            raise StoreUnavailableError(f"Failed to read {npy_path}: {e}") from e
        if arr.ndim != 2 or not arr.shape[0] or not arr.shape[1]:
            raise StoreUnavailableError(f"Invalid shape {arr.shape} in {npy_path}")
        return arr.astype(np.float64)

    raise StoreUnavailableError(
        f"No embeddings found. Expected {json_path} (JSON) or {npy_path} (.npy)."
    )


def load_corpus(rag_dir: str | Path) -> CorpusData:
    """Synchronously read and normalize the corpus under ``rag_dir``."""
    rag_path = Path(rag_dir)
    chunks = read_chunks(rag_path / CHUNKS_FILENAME)
    raw = read_embeddings(rag_path)
    embeddings = normalize_matrix(raw) if raw.size else np.zeros((0, 0))

    if len(embeddings) != len(chunks):
        logger.warning(
            "Embedding count (%d) does not match chunk count (%d); "
            "only the first %d positions are retrievable",
            len(embeddings),
            len(chunks),
            min(len(embeddings), len(chunks)),
        )

    corpus = CorpusData(chunks=tuple(chunks), embeddings=embeddings)
    if corpus.size == 0:
        raise StoreUnavailableError(f"RAG store at {rag_path} is empty")
    return corpus


# ============================================
# Corpus Store
# ============================================


class CorpusStore:
    """Process-wide lazily-loaded corpus handle.

    The first ``load()`` reads the files in a worker thread; concurrent
    first callers wait on the same lock and receive the same object.
    A failed load leaves the store empty so a later call can retry.
    """

    def __init__(self, rag_dir: str | Path | None = None) -> None:
        self.rag_dir = Path(rag_dir or RAG_DIR)
        self._data: CorpusData | None = None
        self._lock = asyncio.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._data is not None

    async def load(self) -> CorpusData:
        if self._data is not None:
            return self._data

        async with self._lock:
            if self._data is None:
                logger.info("Loading RAG store from %s", self.rag_dir)
                try:
                    data = await asyncio.to_thread(load_corpus, self.rag_dir)
                except (OSError, UnicodeDecodeError) as e:
                    raise StoreUnavailableError(
                        f"Failed to read RAG store at {self.rag_dir}: {e}"
                    ) from e
                logger.info(
                    "Loaded %d chunks, %d embeddings (dim=%s)",
                    len(data.chunks),
                    len(data.embeddings),
                    data.dimensions,
                )
                self._data = data
        return self._data
