"""
TB Guideline Retrieval Test Configuration

Pytest fixtures and configuration for the test suite.
"""

import json
from collections.abc import Generator
from pathlib import Path

import numpy as np
import pytest
from fastapi.testclient import TestClient

from src.main import app
from src.rag.corpus import Chunk, CorpusStore
from src.rag.embedding import EmbeddingProviderError, QueryEmbedder

# ============================================
# Sample Corpus
# ============================================

# Query vectors point along the first axis; each chunk's similarity is the
# first component of its (unit-normalized) embedding.
QUERY_VECTOR = [1.0, 0.0, 0.0, 0.0]

SAMPLE_CHUNKS = [
    {
        "chunk_id": "m4-dr-001",
        "doc_id": "who-module4-treatment-2025",
        "guideline_title": "WHO consolidated guidelines on tuberculosis: Module 4: treatment",
        "year": 2025,
        "section_path": "Chapter 2 : Drug-resistant TB treatment | 2.1 The 6-month BPaLM regimen",
        "scope": "treatment",
        "content_type": "prose",
        "text": "The 6-month BPaLM regimen is recommended for people with MDR/RR-TB.",
    },
    {
        "chunk_id": "m4-ds-001",
        "doc_id": "who-module4-treatment-2022",
        "guideline_title": "WHO consolidated guidelines on tuberculosis: Module 4: treatment",
        "year": 2022,
        "section_path": "Chapter 1 : Drug-susceptible TB treatment | 1.2 The 4-month HPMZ regimen",
        "scope": "treatment",
        "content_type": "prose",
        "text": "People with drug-susceptible TB may receive the 4-month HPMZ regimen.",
    },
    {
        "chunk_id": "m4-dr-tbl-001",
        "doc_id": "who-module4-treatment-2025",
        "guideline_title": "WHO consolidated guidelines on tuberculosis: Module 4: treatment",
        "year": 2025,
        "section_path": "Chapter 2 : Drug-resistant TB treatment | 2.1 The 6-month BPaLM regimen",
        "scope": "treatment",
        "content_type": "table",
        "text": "",
        "attachment_id": "tbl-1",
        "attachment_path": "public/rag/tables/dosing.csv",
        "caption": "Weight-band dosing of first-line medicines",
    },
    {
        "chunk_id": "m1-tpt-001",
        "doc_id": "who-module1-tpt-2024",
        "guideline_title": "WHO consolidated guidelines on tuberculosis: Module 1: prevention",
        "year": 2024,
        "section_path": "TB preventive treatment | 3.4 Contacts of MDR/RR-TB",
        "scope": "prevention",
        "content_type": "prose",
        "text": "Six months of daily levofloxacin is recommended for contacts of MDR/RR-TB.",
    },
    {
        "chunk_id": "m1-tpt-002",
        "doc_id": "who-module1-tpt-2024",
        "guideline_title": "WHO consolidated guidelines on tuberculosis: Module 1: prevention",
        "year": 2024,
        "section_path": "TB infection | 2.1 Testing for TB infection",
        "scope": "prevention",
        "content_type": "prose",
        "text": "Either a tuberculin skin test or an interferon-gamma release assay can be used.",
    },
    {
        "chunk_id": "m3-dx-001",
        "doc_id": "who-module3-diagnosis-2024",
        "guideline_title": "WHO consolidated guidelines on tuberculosis: Module 3: diagnosis",
        "year": 2024,
        "section_path": "Diagnosis | Xpert MTB/RIF Ultra",
        "scope": "diagnosis",
        "content_type": "prose",
        "text": "Xpert MTB/RIF Ultra should be used as the initial diagnostic test.",
    },
    {
        "chunk_id": "m5-tbl-001",
        "doc_id": "who-module5-pediatrics-2022",
        "guideline_title": "WHO consolidated guidelines on tuberculosis: Module 5: children",
        "year": 2022,
        "section_path": "3.3.5 Preventive treatment in children",
        "scope": "prevention",
        "content_type": "table",
        "text": "",
        "attachment_id": "tbl-2",
        "attachment_path": "tables/peds_regimen.csv",
        "caption": "Preventive treatment regimens for children",
        "metadata": {"table_subtype": "regimen"},
    },
    {
        "chunk_id": "m4-tbl-missing",
        "doc_id": "who-module4-treatment-2025",
        "guideline_title": "WHO consolidated guidelines on tuberculosis: Module 4: treatment",
        "year": 2025,
        "section_path": "Chapter 3 : Monitoring",
        "scope": "treatment",
        "content_type": "table",
        "text": "",
        "attachment_id": "tbl-3",
        "attachment_path": "tables/missing.csv",
        "caption": "Monitoring schedule",
    },
]

SAMPLE_EMBEDDINGS = [
    [0.96, 0.28, 0.0, 0.0],
    [0.8, 0.6, 0.0, 0.0],
    [0.6, 0.8, 0.0, 0.0],
    [0.5, 0.0, 0.866, 0.0],
    [0.28, 0.96, 0.0, 0.0],
    [0.9, 0.0, 0.0, 0.436],
    [0.7, 0.0, 0.714, 0.0],
    [0.4, 0.0, 0.0, 0.917],
]

DOSING_CSV = """row_index,ColumnA,ColumnB,ColumnC
1,Weight band,Isoniazid (mg),Rifampicin (mg)
2,25-32 kg,300,600
3,33-39 kg,300,600
"""

PEDS_REGIMEN_CSV = """row_index,ColumnA,ColumnB,ColumnC
1,Regimen,Drugs,Duration
2,3HP,Isoniazid + rifapentine,3 months
3,6Lfx,Levofloxacin,6 months
"""


def write_corpus(
    root: Path,
    chunks: list[dict] = SAMPLE_CHUNKS,
    embeddings: list[list[float]] = SAMPLE_EMBEDDINGS,
) -> Path:
    """Write a manifest, a JSON embedding file and table CSVs under ``root``."""
    root.mkdir(parents=True, exist_ok=True)
    with (root / "chunks.jsonl").open("w", encoding="utf-8") as f:
        for record in chunks:
            f.write(json.dumps(record) + "\n")
    (root / "embeddings.json").write_text(json.dumps(embeddings), encoding="utf-8")
    tables = root / "tables"
    tables.mkdir(exist_ok=True)
    (tables / "dosing.csv").write_text(DOSING_CSV, encoding="utf-8")
    (tables / "peds_regimen.csv").write_text(PEDS_REGIMEN_CSV, encoding="utf-8")
    return root


@pytest.fixture
def rag_dir(tmp_path: Path) -> Path:
    """On-disk sample corpus."""
    return write_corpus(tmp_path / "rag")


@pytest.fixture
def corpus_store(rag_dir: Path) -> CorpusStore:
    return CorpusStore(rag_dir)


@pytest.fixture
def sample_chunks() -> list[Chunk]:
    return [Chunk.from_record(r, position=i) for i, r in enumerate(SAMPLE_CHUNKS)]


# ============================================
# Embedding Fixtures
# ============================================


class FakeEmbedder(QueryEmbedder):
    """Returns a fixed vector (or raises) without calling a provider."""

    model_name = "fake-embedding-model"

    def __init__(self, vector=None, error: Exception | None = None, cache=None) -> None:
        super().__init__(cache=cache)
        self.vector = list(vector if vector is not None else QUERY_VECTOR)
        self.error = error
        self.calls: list[str] = []

    async def _embed_raw(self, question: str) -> list[float]:
        self.calls.append(question)
        if self.error is not None:
            raise self.error
        return self.vector


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def failing_embedder() -> FakeEmbedder:
    return FakeEmbedder(error=EmbeddingProviderError("Embedding provider error: 429 quota", 429))


@pytest.fixture
def unit_vector() -> np.ndarray:
    return np.asarray(QUERY_VECTOR, dtype=np.float64)


# ============================================
# Client Fixtures
# ============================================


@pytest.fixture(autouse=True)
def reset_metrics() -> Generator[None, None, None]:
    """Clear in-memory metrics before each test."""
    from src.observability.metrics import reset_metrics as _reset

    _reset()
    yield


@pytest.fixture
def client(rag_dir: Path, fake_embedder: FakeEmbedder) -> Generator[TestClient, None, None]:
    """Synchronous test client wired to the sample corpus and fake embedder."""
    from src.rag.profile import DEFAULT_PROFILE

    with TestClient(app) as c:
        app.state.store = CorpusStore(rag_dir)
        app.state.embedder = fake_embedder
        app.state.profile = DEFAULT_PROFILE
        yield c


# ============================================
# Sample Data Fixtures
# ============================================


@pytest.fixture
def sample_query() -> dict:
    """Sample retrieval request body."""
    return {
        "question": "What is the recommended TPT regimen for a household contact of an MDR-TB case?",
        "top_k": 5,
    }


# ============================================
# Marker Configuration
# ============================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "requires_redis: test requires Redis connection")
    config.addinivalue_line("markers", "requires_model: test downloads an embedding model")


@pytest.fixture
def make_embedder():
    """Factory for fake embedders with a custom vector, error or cache."""
    return FakeEmbedder
