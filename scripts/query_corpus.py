#!/usr/bin/env python3
"""
Run one question through the retrieval pipeline against a local corpus.

Prints the ranked results (with rendered tables) and the retrieval log.
Uses the configured embedding provider (EMBEDDING_PROVIDER, OPENAI_API_KEY).

Run: python scripts/query_corpus.py "Which regimen for a child with MDR-TB?" --top-k 5
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def run_query(args: argparse.Namespace) -> int:
    from src.pipelines.retrieval import RetrievalPipeline
    from src.rag.corpus import RAG_DIR, CorpusStore, StoreUnavailableError
    from src.rag.embedding import EmbeddingProviderError, create_embedder
    from src.rag.profile import load_profile
    from src.security.input_validation import RetrievalRequest

    request = RetrievalRequest(
        question=args.question,
        top_k=args.top_k,
        scope=args.scope,
        include_table_rows=args.rows,
    )
    pipeline = RetrievalPipeline(
        store=CorpusStore(args.rag_dir or RAG_DIR),
        embedder=create_embedder(),
        profile=load_profile(),
    )

    try:
        response = await pipeline.run(request)
    except (StoreUnavailableError, EmbeddingProviderError) as e:
        logger.error("Query failed: %s", e)
        return 1

    print("=" * 60)
    print(f"Scope: {response.scope}  top_k: {response.top_k}  ({response.processing_time_ms} ms)")
    print("=" * 60)
    for rank, result in enumerate(response.results, start=1):
        print(f"[{rank}] {result['score']:.4f}  {result['doc_id']}  {result['chunk_id']}")
        print(f"    {result['section_path']}")
        body = result["table_text"] or result["text"]
        for line in body.splitlines()[:8]:
            print(f"    {line}")
        print()

    if args.log:
        print("Retrieval log:")
        print(json.dumps(response.retrieval_log, indent=2, default=str))
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Query the TB guideline RAG store.")
    parser.add_argument("question")
    parser.add_argument("--top-k", type=int, default=8)
    parser.add_argument("--scope", default=None)
    parser.add_argument("--rag-dir", default=None, help="Corpus directory (default: RAG_DIR)")
    parser.add_argument("--rows", action="store_true", help="Include raw table rows")
    parser.add_argument("--log", action="store_true", help="Print the retrieval log")
    args = parser.parse_args()
    return asyncio.run(run_query(args))


if __name__ == "__main__":
    sys.exit(main())
