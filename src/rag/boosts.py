"""
Boost / penalty cascade for guideline retrieval

Each stage takes a scored channel and returns a NEW list, re-sorted by
score. Candidates record the stages applied to them so a stage never
adjusts the same candidate twice. A stage whose guard does not hold
returns its input order unchanged.

Stages, in pipeline order:
1. authority   - favour the current edition of the module matching the scope
2. ds_penalty  - down-weight drug-susceptible content for DR questions
3. section_proximity - lift tables that sit next to top prose anchors
4. stale_penalty     - down-weight legacy pediatric tables superseded by
                       current-edition content already in the anchors
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from src.rag.corpus import Chunk
from src.rag.profile import DEFAULT_PROFILE, CorpusProfile
from src.rag.retriever import ScoredCandidate, extract_section_keys, sort_candidates
from src.rag.tables import detect_table_subtype

logger = logging.getLogger(__name__)

AUTHORITY = "authority"
DS_PENALTY = "ds_penalty"
SECTION_PROXIMITY = "section_proximity"
STALE_PENALTY = "stale_penalty"


@dataclass(frozen=True)
class RankingContext:
    scope: str | None
    flags: tuple[str, ...] = ()

    @property
    def is_pediatric(self) -> bool:
        return "special_populations" in self.flags

    @property
    def has_drug_resistance(self) -> bool:
        return "drug_resistance" in self.flags

    @property
    def has_tpt(self) -> bool:
        return "tpt" in self.flags


def count_adjusted(candidates: Sequence[ScoredCandidate], stage: str) -> int:
    return sum(1 for c in candidates if c.has(stage))


# ============================================
# Authority / Recency Boost
# ============================================


def _authority_matches(chunk: Chunk, ctx: RankingContext, profile: CorpusProfile) -> int:
    doc = chunk.doc_id or ""
    section = chunk.section_path
    matches = 0
    if ctx.scope == "treatment":
        if profile.current_treatment.matches(doc, section):
            matches += 1
        if (
            ctx.is_pediatric
            and not ctx.has_drug_resistance
            and profile.current_peds_ds_treatment.matches(doc, section)
        ):
            matches += 1
    if ctx.scope == "diagnosis" and ctx.is_pediatric:
        if profile.diagnosis_module.matches(doc, section):
            matches += 1
    if ctx.scope == "prevention" and profile.current_tpt.matches(doc, section):
        matches += 1
    return matches


def apply_authority_boost(
    candidates: Sequence[ScoredCandidate],
    chunks: Sequence[Chunk],
    ctx: RankingContext,
    profile: CorpusProfile = DEFAULT_PROFILE,
) -> list[ScoredCandidate]:
    out = []
    for cand in candidates:
        matches = 0 if cand.has(AUTHORITY) else _authority_matches(chunks[cand.index], ctx, profile)
        if matches:
            cand = cand.adjusted(cand.score * profile.authority_boost**matches, AUTHORITY)
        out.append(cand)
    return sort_candidates(out)


# ============================================
# Drug-Susceptible Penalty
# ============================================


def is_drug_susceptible(chunk: Chunk, profile: CorpusProfile = DEFAULT_PROFILE) -> bool:
    """True for chunks about drug-susceptible TB (scope tag, section, text or DS chapter)."""
    for value in (chunk.scope, chunk.section_path, chunk.text):
        lowered = (value or "").lower()
        if any(sig in lowered for sig in profile.ds_signals):
            return True
    return profile.ds_chapter.matches(chunk.doc_id or "", chunk.section_path)


def apply_ds_penalty(
    candidates: Sequence[ScoredCandidate],
    chunks: Sequence[Chunk],
    ctx: RankingContext,
    profile: CorpusProfile = DEFAULT_PROFILE,
) -> list[ScoredCandidate]:
    if not ctx.has_drug_resistance:
        return list(candidates)

    out = []
    for cand in candidates:
        if not cand.has(DS_PENALTY) and is_drug_susceptible(chunks[cand.index], profile):
            cand = cand.adjusted(cand.score * profile.ds_penalty, DS_PENALTY)
        out.append(cand)
    return sort_candidates(out)


# ============================================
# Section-Proximity Boost
# ============================================


@dataclass(frozen=True)
class Anchor:
    index: int
    doc_id: str
    section_keys: frozenset[str]


@dataclass(frozen=True)
class AnchorSet:
    anchors: tuple[Anchor, ...] = ()
    has_dr_treatment_anchor: bool = False
    has_tpt_anchor: bool = False


def collect_anchors(
    prose: Sequence[ScoredCandidate],
    chunks: Sequence[Chunk],
    profile: CorpusProfile = DEFAULT_PROFILE,
) -> AnchorSet:
    """Top prose candidates that carry a doc id, with their section keys."""
    anchors = []
    has_dr = False
    has_tpt = False
    for cand in prose[: profile.anchor_count]:
        chunk = chunks[cand.index]
        if not chunk.doc_id:
            continue
        anchors.append(
            Anchor(
                index=cand.index,
                doc_id=chunk.doc_id,
                section_keys=frozenset(extract_section_keys(chunk.section_path)),
            )
        )
        if profile.dr_treatment_anchor.matches(chunk.doc_id, chunk.section_path):
            has_dr = True
        if profile.tpt_anchor.matches(chunk.doc_id, chunk.section_path):
            has_tpt = True
    return AnchorSet(
        anchors=tuple(anchors),
        has_dr_treatment_anchor=has_dr,
        has_tpt_anchor=has_tpt,
    )


def apply_section_proximity(
    tables: Sequence[ScoredCandidate],
    prose: Sequence[ScoredCandidate],
    chunks: Sequence[Chunk],
    anchors: AnchorSet,
    profile: CorpusProfile = DEFAULT_PROFILE,
) -> list[ScoredCandidate]:
    """Raise tables sharing a doc id and a section key with an anchor.

    A neighbour's score becomes at least ``neighbor_floor`` times the best
    prose score (1.0 when the prose channel is empty).
    """
    best_prose = prose[0].score if prose else 1.0
    floor = best_prose * profile.neighbor_floor

    out = []
    for cand in tables:
        chunk = chunks[cand.index]
        if chunk.doc_id and not cand.has(SECTION_PROXIMITY) and cand.score < floor:
            keys = extract_section_keys(chunk.section_path)
            if any(a.doc_id == chunk.doc_id and a.section_keys & keys for a in anchors.anchors):
                cand = cand.adjusted(floor, SECTION_PROXIMITY)
        out.append(cand)
    return sort_candidates(out)


# ============================================
# Stale-Content Penalty
# ============================================


def _effective_table_subtype(chunk: Chunk) -> str:
    if chunk.table_subtype:
        return chunk.table_subtype.lower()
    return detect_table_subtype(chunk, []).value


def apply_stale_penalty(
    tables: Sequence[ScoredCandidate],
    chunks: Sequence[Chunk],
    ctx: RankingContext,
    anchors: AnchorSet,
    profile: CorpusProfile = DEFAULT_PROFILE,
) -> list[ScoredCandidate]:
    """Down-weight legacy pediatric regimen/decision tables.

    Applies when current-edition content is already anchoring the prose
    channel: the adult DR-treatment chapter for pediatric DR treatment
    questions, or the current TPT module for TPT questions.
    """
    dr_guard = (
        ctx.scope == "treatment"
        and ctx.is_pediatric
        and ctx.has_drug_resistance
        and anchors.has_dr_treatment_anchor
    )
    tpt_guard = ctx.scope == "prevention" and ctx.has_tpt and anchors.has_tpt_anchor
    if not dr_guard and not tpt_guard:
        return list(tables)

    out = []
    for cand in tables:
        chunk = chunks[cand.index]
        if (
            not cand.has(STALE_PENALTY)
            and chunk.is_table
            and profile.legacy_pediatric.matches(chunk.doc_id or "", chunk.section_path)
            and _effective_table_subtype(chunk) in profile.stale_table_subtypes
        ):
            section = chunk.section_path.lower()
            in_legacy_tpt = any(s in section for s in profile.legacy_tpt_sections)
            if dr_guard or in_legacy_tpt:
                cand = cand.adjusted(cand.score * profile.stale_penalty, STALE_PENALTY)
        out.append(cand)
    return sort_candidates(out)


# ============================================
# Forced Inclusion
# ============================================


def select_guaranteed(
    prose: Sequence[ScoredCandidate],
    chunks: Sequence[Chunk],
    ctx: RankingContext,
    profile: CorpusProfile = DEFAULT_PROFILE,
) -> list[ScoredCandidate]:
    """Prose candidates eligible for forced inclusion, in score order."""
    rule = None
    if ctx.scope == "treatment" and ctx.is_pediatric and ctx.has_drug_resistance:
        rule = profile.guarantee_dr_treatment
    elif ctx.scope == "prevention" and ctx.has_tpt:
        rule = profile.guarantee_tpt
    if rule is None:
        return []
    return [
        c
        for c in prose
        if rule.matches(chunks[c.index].doc_id or "", chunks[c.index].section_path)
    ]
