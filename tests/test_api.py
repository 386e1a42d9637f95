"""
Tests for the TB guideline retrieval API endpoints.
"""

import pytest
from fastapi import status

from src.main import app
from src.rag.corpus import CorpusStore
from src.security.input_validation import MISSING_QUESTION_MESSAGE


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    @pytest.mark.unit
    def test_health_check(self, client):
        """Test the /health endpoint returns healthy status."""
        response = client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data

    @pytest.mark.unit
    def test_readiness_after_first_query(self, client, sample_query):
        """Corpus reports ready once it has been loaded."""
        assert client.get("/ready").json()["checks"]["corpus"] == "not_loaded"

        client.post("/api/v1/tb-rag-query", json=sample_query)
        data = client.get("/ready").json()

        assert data["ready"] is True
        assert data["checks"]["corpus"] == "ok"
        assert data["checks"]["embedding_provider"] == "ok"


class TestQueryEndpoint:
    """Tests for the retrieval endpoint."""

    @pytest.mark.unit
    def test_query_returns_expected_keys(self, client, sample_query):
        response = client.post("/api/v1/tb-rag-query", json=sample_query)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["question"] == sample_query["question"]
        assert data["scope"] == "prevention"
        assert data["top_k"] == 5
        assert 0 < len(data["results"]) <= 5
        assert data["retrieval_log"][0]["stage"] == "request"

    @pytest.mark.unit
    def test_legacy_path_alias(self, client, sample_query):
        response = client.post("/api/tb-rag-query", json=sample_query)
        assert response.status_code == status.HTTP_200_OK

    @pytest.mark.unit
    def test_top_k_is_clamped(self, client):
        response = client.post("/api/v1/tb-rag-query", json={"question": "Hello there", "top_k": 50})
        assert response.json()["top_k"] == 8

        response = client.post("/api/v1/tb-rag-query", json={"question": "Hello there", "top_k": 0})
        assert len(response.json()["results"]) == 1

    @pytest.mark.unit
    def test_explicit_scope_is_used(self, client):
        response = client.post(
            "/api/v1/tb-rag-query", json={"question": "Hello there", "scope": "Diagnosis"}
        )
        data = response.json()
        assert data["scope"] == "diagnosis"
        assert [r["chunk_id"] for r in data["results"]] == ["m3-dx-001"]

    @pytest.mark.unit
    def test_short_table_row_still_returns_rows(self, client, rag_dir):
        (rag_dir / "tables" / "dosing.csv").write_text(
            "row_index,ColumnA,ColumnB,ColumnC\n"
            "1,Weight band,Isoniazid (mg),Rifampicin (mg)\n"
            "2,25-32 kg,300\n",
            encoding="utf-8",
        )
        response = client.post(
            "/api/v1/tb-rag-query",
            json={"question": "Isoniazid dose by weight", "scope": "treatment", "include_table_rows": True},
        )

        assert response.status_code == status.HTTP_200_OK
        table = next(r for r in response.json()["results"] if r["chunk_id"] == "m4-dr-tbl-001")
        assert table["table_rows"][1]["ColumnC"] == ""
        assert "nan" not in table["table_text"]

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "body",
        [
            {},
            {"question": ""},
            {"question": "   "},
            {"question": 42},
            {"top_k": 3},
        ],
    )
    def test_missing_question_returns_400(self, client, body):
        response = client.post("/api/v1/tb-rag-query", json=body)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {"error": MISSING_QUESTION_MESSAGE}

    @pytest.mark.unit
    def test_invalid_scope_returns_400(self, client):
        response = client.post("/api/v1/tb-rag-query", json={"question": "x", "scope": "surgery"})
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "scope" in response.json()["error"]

    @pytest.mark.unit
    def test_non_boolean_include_table_rows_returns_400(self, client):
        response = client.post(
            "/api/v1/tb-rag-query", json={"question": "x", "include_table_rows": "yes"}
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "include_table_rows" in response.json()["error"]

    @pytest.mark.unit
    def test_malformed_json_returns_400(self, client):
        response = client.post(
            "/api/v1/tb-rag-query",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "error" in response.json()

    @pytest.mark.unit
    def test_non_object_body_returns_400(self, client):
        response = client.post("/api/v1/tb-rag-query", json=["question"])
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    @pytest.mark.unit
    @pytest.mark.parametrize("method", ["get", "put", "patch", "delete"])
    def test_non_post_returns_405(self, client, method):
        response = getattr(client, method)("/api/v1/tb-rag-query")

        assert response.status_code == status.HTTP_405_METHOD_NOT_ALLOWED
        assert response.headers["allow"] == "POST"
        assert response.json() == {"error": "Use POST to query the TB RAG store."}


class TestQueryErrors:
    """Store and provider failures surface as structured 500s."""

    @pytest.mark.unit
    def test_store_unavailable_returns_500(self, client, tmp_path, sample_query):
        app.state.store = CorpusStore(tmp_path / "missing")
        response = client.post("/api/v1/tb-rag-query", json=sample_query)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert "Chunk manifest not found" in response.json()["error"]

    @pytest.mark.unit
    def test_store_recovers_after_operator_fix(self, client, rag_dir, sample_query):
        manifest = rag_dir / "chunks.jsonl"
        stashed = rag_dir / "chunks.jsonl.bak"
        manifest.rename(stashed)
        assert client.post("/api/v1/tb-rag-query", json=sample_query).status_code == 500

        stashed.rename(manifest)
        assert client.post("/api/v1/tb-rag-query", json=sample_query).status_code == 200

    @pytest.mark.unit
    def test_embedding_error_returns_500_with_provider_status(
        self, client, failing_embedder, sample_query
    ):
        app.state.embedder = failing_embedder
        response = client.post("/api/v1/tb-rag-query", json=sample_query)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        data = response.json()
        assert data["provider_status"] == 429
        assert "quota" in data["error"]

    @pytest.mark.unit
    def test_unconfigured_embedder_returns_500(self, client, sample_query):
        app.state.embedder = None
        response = client.post("/api/v1/tb-rag-query", json=sample_query)
        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {"error": "Embedding provider is not configured."}


class TestAuxiliaryEndpoints:
    @pytest.mark.unit
    def test_tool_schema(self, client):
        data = client.get("/api/v1/tool-schema").json()
        assert data["function"]["name"] == "tb_rag_query"
        assert data["function"]["parameters"]["required"] == ["question"]

    @pytest.mark.unit
    def test_metrics_count_queries(self, client, sample_query):
        client.post("/api/v1/tb-rag-query", json=sample_query)
        client.post("/api/v1/tb-rag-query", json={"question": ""})

        text = client.get("/metrics").text
        assert "queries_total 1" in text
        assert 'queries_by_scope{scope="prevention"} 1' in text

    @pytest.mark.unit
    def test_metrics_is_read_only(self, client):
        assert client.post("/metrics").status_code == status.HTTP_405_METHOD_NOT_ALLOWED
        assert client.post("/metrics/reset").status_code == status.HTTP_404_NOT_FOUND
