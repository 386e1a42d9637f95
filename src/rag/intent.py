"""
Intent classification and scope resolution for TB guideline questions.

Purely lexical: the question is lower-cased, whitespace-collapsed and
tested for keyword substrings from ``src.rag.keywords``. No stemming.
"""

import re

from src.rag.keywords import (
    IMPLIED_FLAGS,
    INTENT_KEYWORDS,
    SCOPE_FALLBACK_KEYWORDS,
    SCOPE_FALLBACK_MIN_HITS,
    SCOPE_FALLBACK_RULES,
    SCOPE_FLAGS,
    SCOPE_PRIORITY,
)


_WHITESPACE = re.compile(r"\s+")


def normalize_question(question: str) -> str:
    return _WHITESPACE.sub(" ", (question or "").lower()).strip()


def classify_intent(question: str) -> list[str]:
    """Return the intent flags a question carries, in keyword-table order.

    Groups are independent: a question may carry any number of flags,
    including none.
    """
    q = normalize_question(question)
    if not q:
        return []

    flags: list[str] = []
    for flag, phrases in INTENT_KEYWORDS.items():
        if any(phrase in q for phrase in phrases):
            for name in (flag, *IMPLIED_FLAGS.get(flag, ())):
                if name not in flags:
                    flags.append(name)
    return flags


def infer_population_context(flags: list[str]) -> dict[str, bool]:
    """Population signals for logging; these never choose a scope."""
    return {
        "special_populations": "special_populations" in flags,
        "comorbidities": "comorbidities" in flags,
    }


def _keyword_hits(text: str, keywords: tuple[str, ...]) -> int:
    return sum(1 for kw in keywords if kw in text)


def resolve_scope(
    question: str,
    flags: list[str],
    explicit_scope: str | None = None,
) -> str | None:
    """Pick at most one topical scope for a question.

    An explicit scope wins unchanged. Otherwise topical flags vote and the
    highest-priority candidate wins (treatment > diagnosis > prevention >
    screening). With no topical flag, a keyword-count heuristic decides.
    """
    if explicit_scope:
        return explicit_scope

    candidates = {
        scope
        for scope, scope_flags in SCOPE_FLAGS.items()
        if any(f in flags for f in scope_flags)
    }
    for scope in SCOPE_PRIORITY:
        if scope in candidates:
            return scope

    q = normalize_question(question)
    if not q:
        return None

    for scope, module_mention, mention_needs_hit in SCOPE_FALLBACK_RULES:
        hits = _keyword_hits(q, SCOPE_FALLBACK_KEYWORDS[scope])
        if hits >= SCOPE_FALLBACK_MIN_HITS:
            return scope
        if module_mention in q and (hits > 0 or not mention_needs_hit):
            return scope

    return None
