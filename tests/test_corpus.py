"""
Tests for the corpus store: manifest parsing, embedding sources,
normalization and once-per-process loading.
"""

import asyncio
import json

import numpy as np
import pytest

from src.rag.corpus import (
    LFS_POINTER_PREFIX,
    Chunk,
    CorpusStore,
    StoreUnavailableError,
    load_corpus,
    normalize_matrix,
    normalize_vector,
    read_chunks,
)


class TestNormalization:
    """Unit-norm invariant for embedding vectors."""

    @pytest.mark.unit
    def test_rows_have_unit_norm(self):
        out = normalize_matrix([[3.0, 4.0], [1.0, 1.0], [0.0, 2.0]])
        np.testing.assert_allclose(np.linalg.norm(out, axis=1), [1.0, 1.0, 1.0])
        np.testing.assert_allclose(out[0], [0.6, 0.8])

    @pytest.mark.unit
    def test_zero_row_stays_zero(self):
        out = normalize_matrix([[0.0, 0.0], [1.0, 0.0]])
        assert not out[0].any()
        assert out[1][0] == pytest.approx(1.0)

    @pytest.mark.unit
    def test_non_finite_row_becomes_zero(self):
        out = normalize_matrix([[np.nan, 1.0], [np.inf, 1.0], [2.0, 0.0]])
        assert not out[0].any()
        assert not out[1].any()
        assert np.isfinite(out).all()

    @pytest.mark.unit
    def test_normalize_vector(self):
        v = normalize_vector([0.0, 5.0, 0.0])
        np.testing.assert_allclose(v, [0.0, 1.0, 0.0])

    @pytest.mark.unit
    def test_rejects_non_2d(self):
        with pytest.raises(ValueError):
            normalize_matrix([1.0, 2.0])


class TestChunk:
    """Chunk record parsing."""

    @pytest.mark.unit
    def test_table_subtype_read_from_metadata(self):
        chunk = Chunk.from_record(
            {"chunk_id": 7, "content_type": "Table", "metadata": {"table_subtype": "regimen"}},
            position=0,
        )
        assert chunk.chunk_id == "7"
        assert chunk.is_table
        assert chunk.table_subtype == "regimen"
        assert chunk.extra == {"metadata": {"table_subtype": "regimen"}}

    @pytest.mark.unit
    def test_identity_falls_back_to_doc_and_position(self):
        chunk = Chunk.from_record({"doc_id": "who-module1-tpt-2024"}, position=12)
        assert chunk.identity == "who-module1-tpt-2024#12"
        assert chunk.section_path == ""
        assert chunk.text == ""


class TestReadChunks:
    """Manifest parsing."""

    @pytest.mark.unit
    def test_missing_manifest_raises(self, tmp_path):
        with pytest.raises(StoreUnavailableError, match="not found"):
            read_chunks(tmp_path / "chunks.jsonl")

    @pytest.mark.unit
    def test_blank_lines_are_skipped(self, tmp_path):
        path = tmp_path / "chunks.jsonl"
        path.write_text('{"chunk_id": "a"}\n\n   \n{"chunk_id": "b"}\n', encoding="utf-8")
        chunks = read_chunks(path)
        assert [c.chunk_id for c in chunks] == ["a", "b"]
        assert [c.position for c in chunks] == [0, 1]

    @pytest.mark.unit
    def test_malformed_line_raises(self, tmp_path):
        path = tmp_path / "chunks.jsonl"
        path.write_text('{"chunk_id": "a"}\n{not json}\n', encoding="utf-8")
        with pytest.raises(StoreUnavailableError, match="line 2"):
            read_chunks(path)

    @pytest.mark.unit
    def test_invalid_utf8_raises_store_error(self, tmp_path):
        path = tmp_path / "chunks.jsonl"
        path.write_bytes(b'{"chunk_id": "a"}\n{"chunk_id": "bad\xff\xfe"}\n')
        with pytest.raises(StoreUnavailableError, match="not valid UTF-8"):
            read_chunks(path)


class TestLoadCorpus:
    """Embedding source selection and count handling."""

    @pytest.mark.unit
    def test_loads_sample_corpus(self, rag_dir):
        corpus = load_corpus(rag_dir)
        assert corpus.size == 8
        assert corpus.dimensions == 4
        np.testing.assert_allclose(np.linalg.norm(corpus.embeddings, axis=1), 1.0, atol=1e-9)

    @pytest.mark.unit
    def test_lfs_pointer_falls_back_to_npy(self, rag_dir):
        (rag_dir / "embeddings.json").write_text(
            LFS_POINTER_PREFIX + "\noid sha256:abc\nsize 123\n", encoding="utf-8"
        )
        np.save(rag_dir / "embeddings.npy", np.eye(8, 4))
        corpus = load_corpus(rag_dir)
        assert corpus.embeddings.shape == (8, 4)

    @pytest.mark.unit
    def test_unparseable_json_falls_back_to_npy(self, rag_dir):
        (rag_dir / "embeddings.json").write_text("[[0.1, 0.2", encoding="utf-8")
        np.save(rag_dir / "embeddings.npy", np.ones((8, 3)))
        assert load_corpus(rag_dir).dimensions == 3

    @pytest.mark.unit
    def test_invalid_utf8_json_falls_back_to_npy(self, rag_dir, caplog):
        (rag_dir / "embeddings.json").write_bytes(b"[[0.1, \xff\xfe]]")
        np.save(rag_dir / "embeddings.npy", np.ones((8, 3)))
        assert load_corpus(rag_dir).dimensions == 3
        assert "not valid UTF-8" in caplog.text

    @pytest.mark.unit
    def test_no_embedding_source_raises(self, rag_dir):
        (rag_dir / "embeddings.json").unlink()
        with pytest.raises(StoreUnavailableError, match="No embeddings found"):
            load_corpus(rag_dir)

    @pytest.mark.unit
    def test_count_mismatch_warns_and_proceeds(self, rag_dir, caplog):
        (rag_dir / "embeddings.json").write_text(json.dumps([[1.0, 0.0]] * 5), encoding="utf-8")
        corpus = load_corpus(rag_dir)
        assert len(corpus.chunks) == 8
        assert corpus.size == 5
        assert "does not match chunk count" in caplog.text

    @pytest.mark.unit
    def test_empty_embeddings_raise(self, rag_dir):
        (rag_dir / "embeddings.json").write_text("[]", encoding="utf-8")
        with pytest.raises(StoreUnavailableError, match="empty"):
            load_corpus(rag_dir)


class TestCorpusStore:
    """Once-per-process loading."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_repeated_load_returns_same_object(self, corpus_store):
        first = await corpus_store.load()
        second = await corpus_store.load()
        assert first is second
        assert corpus_store.is_loaded

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_concurrent_first_load_reads_once(self, corpus_store, mocker):
        spy = mocker.patch("src.rag.corpus.load_corpus", wraps=load_corpus)
        results = await asyncio.gather(*(corpus_store.load() for _ in range(5)))
        assert spy.call_count == 1
        assert all(r is results[0] for r in results)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_load_can_be_retried(self, rag_dir):
        manifest = rag_dir / "chunks.jsonl"
        stashed = rag_dir / "chunks.jsonl.bak"
        manifest.rename(stashed)
        store = CorpusStore(rag_dir)

        with pytest.raises(StoreUnavailableError):
            await store.load()
        assert not store.is_loaded

        stashed.rename(manifest)
        corpus = await store.load()
        assert corpus.size == 8

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_undecodable_manifest_surfaces_as_store_error(self, rag_dir):
        with (rag_dir / "chunks.jsonl").open("ab") as f:
            f.write(b'{"chunk_id": "bad\xff\xfe"}\n')
        store = CorpusStore(rag_dir)

        with pytest.raises(StoreUnavailableError, match="UTF-8"):
            await store.load()
        assert not store.is_loaded
