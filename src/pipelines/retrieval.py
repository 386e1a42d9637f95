"""
Retrieval Pipeline for TB guideline questions

Runs one question through the full ranking flow:

    intent + scope -> corpus load -> query embedding -> scope filter ->
    dual-channel ranking -> boost/penalty cascade -> merge + guarantee ->
    table enrichment -> response

Every stage appends to the per-query retrieval log, which is returned in
the response and written to the server log.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from src.observability.metrics import record_table_failure
from src.observability.retrieval_log import RetrievalLog, format_entry
from src.rag.boosts import (
    AUTHORITY,
    DS_PENALTY,
    SECTION_PROXIMITY,
    STALE_PENALTY,
    RankingContext,
    apply_authority_boost,
    apply_ds_penalty,
    apply_section_proximity,
    apply_stale_penalty,
    collect_anchors,
    count_adjusted,
    select_guaranteed,
)
from src.rag.corpus import CorpusStore
from src.rag.embedding import QueryEmbedder
from src.rag.intent import classify_intent, infer_population_context, resolve_scope
from src.rag.profile import DEFAULT_PROFILE, CorpusProfile
from src.rag.retriever import (
    filter_indices_by_scope,
    merge_channels,
    rank_channel,
    resolve_top_k,
    split_channels,
)
from src.rag.tables import TABLE_ROOT, enrich_table_chunk
from src.security.input_validation import RetrievalRequest

logger = logging.getLogger(__name__)


@dataclass
class RetrievalResponse:
    """Ranked, enriched results for one question."""

    question: str
    top_k: int
    scope: str | None
    results: list[dict[str, Any]]
    retrieval_log: list[dict[str, Any]] = field(default_factory=list)
    processing_time_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "question": self.question,
            "top_k": self.top_k,
            "scope": self.scope,
            "results": self.results,
            "retrieval_log": self.retrieval_log,
        }


class RetrievalPipeline:
    """Guideline retrieval and ranking for a single question."""

    def __init__(
        self,
        store: CorpusStore,
        embedder: QueryEmbedder,
        profile: CorpusProfile = DEFAULT_PROFILE,
        table_root: str | Path | None = None,
    ):
        self.store = store
        self.embedder = embedder
        self.profile = profile
        self.table_root = Path(table_root or TABLE_ROOT or store.rag_dir)

    async def run(self, request: RetrievalRequest) -> RetrievalResponse:
        """Execute the retrieval flow.

        Raises StoreUnavailableError when the corpus cannot be loaded and
        EmbeddingProviderError when the question cannot be embedded.
        """
        start_time = time.time()
        question = request.question
        profile = self.profile
        log = RetrievalLog()

        # --- Intent + scope ---
        flags = classify_intent(question)
        population = infer_population_context(flags)
        scope = resolve_scope(question, flags, request.scope)
        ctx = RankingContext(scope=scope, flags=tuple(flags))

        log.add(
            "request",
            question_preview=question[:200],
            requested_top_k=request.top_k,
            scope_used=scope,
            scope_explicit=request.scope is not None,
            include_table_rows=request.include_table_rows,
            table_row_limit=request.table_row_limit if request.include_table_rows else None,
        )
        log.add("intent", intent_flags=flags, topic_scope=scope, population_context=population)

        # --- Corpus ---
        corpus = await self.store.load()
        chunks = corpus.chunks
        log.add(
            "store_loaded",
            chunk_count=len(chunks),
            embedding_count=len(corpus.embeddings),
            embedding_dimensions=corpus.dimensions,
        )
        top_k = resolve_top_k(request.top_k, corpus.size, profile.max_top_k)

        # --- Query embedding ---
        query_vector = await self.embedder.embed(question)
        if corpus.dimensions is not None and len(query_vector) != corpus.dimensions:
            logger.warning(
                "Query embedding dimension %d differs from corpus dimension %d; "
                "scoring over the shared prefix",
                len(query_vector),
                corpus.dimensions,
            )

        # --- Scope filter ---
        all_indices = list(range(corpus.size))
        scoped = filter_indices_by_scope(all_indices, chunks, scope)
        fell_back = bool(scope) and not scoped
        if not scoped:
            scoped = all_indices
        log.add(
            "filtering",
            scope_used=scope,
            scope_match_count=len(scoped),
            fell_back_to_full_corpus=fell_back,
        )

        # --- Dual-channel ranking ---
        prose_indices, table_indices = split_channels(scoped, chunks)
        log.add("channels", text_candidates=len(prose_indices), table_candidates=len(table_indices))
        prose = rank_channel(query_vector, corpus.embeddings, prose_indices)
        tables = rank_channel(query_vector, corpus.embeddings, table_indices)

        # --- Cascade ---
        prose = apply_authority_boost(prose, chunks, ctx, profile)
        tables = apply_authority_boost(tables, chunks, ctx, profile)
        log.add(
            "authority_boost",
            boosted_text=count_adjusted(prose, AUTHORITY),
            boosted_tables=count_adjusted(tables, AUTHORITY),
            factor=profile.authority_boost,
        )

        prose = apply_ds_penalty(prose, chunks, ctx, profile)
        tables = apply_ds_penalty(tables, chunks, ctx, profile)
        if ctx.has_drug_resistance:
            log.add(
                "ds_downweight",
                intent_flag_present=True,
                penalized_text=count_adjusted(prose, DS_PENALTY),
                penalized_tables=count_adjusted(tables, DS_PENALTY),
                factor=profile.ds_penalty,
            )

        anchors = collect_anchors(prose, chunks, profile)
        tables = apply_section_proximity(tables, prose, chunks, anchors, profile)
        log.add(
            "section_proximity",
            anchor_count=len(anchors.anchors),
            boosted_tables=count_adjusted(tables, SECTION_PROXIMITY),
            has_dr_treatment_anchor=anchors.has_dr_treatment_anchor,
            has_tpt_anchor=anchors.has_tpt_anchor,
        )

        tables = apply_stale_penalty(tables, chunks, ctx, anchors, profile)
        penalized = count_adjusted(tables, STALE_PENALTY)
        if penalized:
            log.add("stale_penalty", penalized_tables=penalized, factor=profile.stale_penalty)

        # --- Merge ---
        top_prose = prose[: profile.prose_cap]
        top_tables = tables[: profile.table_cap]
        log.add(
            "top_candidates",
            text=[format_entry(chunks[c.index], c.score) for c in top_prose],
            tables=[format_entry(chunks[c.index], c.score) for c in top_tables],
        )

        guaranteed = select_guaranteed(prose, chunks, ctx, profile)
        merged, forced = merge_channels(
            top_prose,
            top_tables,
            chunks,
            top_k,
            guaranteed=guaranteed,
            quota=profile.guarantee_quota,
        )
        if guaranteed:
            log.add(
                "guarantee",
                eligible=len(guaranteed),
                forced_chunk_ids=[chunks[i].identity for i in forced],
            )

        # --- Enrichment ---
        results: list[dict[str, Any]] = []
        table_debug: list[dict[str, Any]] = []
        for cand in merged:
            chunk = chunks[cand.index]
            result = self._base_result(chunk, cand.score, request.include_table_rows)
            if chunk.is_table and chunk.attachment_path:
                enrichment = await asyncio.to_thread(
                    enrich_table_chunk,
                    chunk,
                    self.table_root,
                    request.include_table_rows,
                    request.table_row_limit,
                )
                if enrichment is None:
                    record_table_failure()
                    table_debug.append({"chunk_id": chunk.chunk_id, "error": "load_failed"})
                else:
                    result["table_subtype"] = enrichment.subtype.value
                    result["table_text"] = enrichment.text
                    result["table_row_count"] = enrichment.row_count
                    if request.include_table_rows:
                        result["table_rows"] = enrichment.rows
                    table_debug.append({"chunk_id": chunk.chunk_id, **enrichment.debug})
            results.append(result)

        if table_debug:
            log.add("table_enrichment", tables=table_debug)

        log.add(
            "final_results",
            top_k=top_k,
            results=[
                format_entry(chunks[c.index], r["score"], r["table_text"], r["table_subtype"])
                for c, r in zip(merged, results, strict=True)
            ],
        )
        log.emit(question)

        elapsed = (time.time() - start_time) * 1000
        return RetrievalResponse(
            question=question,
            top_k=top_k,
            scope=scope,
            results=results,
            retrieval_log=log.entries,
            processing_time_ms=round(elapsed, 1),
        )

    @staticmethod
    def _base_result(chunk, score: float, include_rows: bool) -> dict[str, Any]:
        result = {
            "doc_id": chunk.doc_id,
            "guideline_title": chunk.guideline_title,
            "year": chunk.year,
            "chunk_id": chunk.chunk_id,
            "section_path": chunk.section_path,
            "text": chunk.text,
            "content_type": chunk.content_type,
            "attachment_id": chunk.attachment_id,
            "attachment_path": chunk.attachment_path,
            "table_subtype": chunk.table_subtype,
            "table_text": None,
            "table_rows": None,
            "table_row_count": None,
            "score": score,
        }
        if not include_rows:
            del result["table_rows"]
        return result
