"""
Per-query retrieval log.

An ordered, append-only list of ``{"stage": ..., **payload}`` records that
explains how a result set was produced. It is returned to the caller and
written to the server log at the end of each query.
"""

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 240

_WHITESPACE = re.compile(r"\s+")


def format_entry(
    chunk: Any, score: float | None, table_text: str | None = None, table_subtype: str | None = None
) -> dict[str, Any]:
    """Compact description of one candidate for the log."""
    source = chunk.text if chunk.text and chunk.text.strip() else (table_text or "")
    preview = _WHITESPACE.sub(" ", source)[:PREVIEW_CHARS] if source.strip() else None
    return {
        "chunk_id": chunk.chunk_id,
        "doc_id": chunk.doc_id,
        "guideline_title": chunk.guideline_title,
        "section_path": chunk.section_path or None,
        "content_type": chunk.content_type,
        "table_subtype": table_subtype or chunk.table_subtype,
        "score": round(score, 4) if isinstance(score, float | int) else None,
        "preview": preview,
    }


class RetrievalLog:
    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []

    def add(self, stage: str, **payload: Any) -> None:
        self.entries.append({"stage": stage, **payload})

    def stages(self) -> list[str]:
        return [e["stage"] for e in self.entries]

    def emit(self, question: str) -> None:
        logger.info(
            "retrieval_log %s",
            json.dumps(
                {"question_preview": question[:120], "entries": self.entries},
                default=str,
            ),
        )
