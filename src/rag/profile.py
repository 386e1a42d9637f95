"""
Corpus Profile

Edition-specific markers and ranking constants for the WHO TB guideline
corpus. Doc ids in the corpus carry module and edition tokens
(e.g. ``who-module4-treatment-2025``) and section paths carry chapter
titles and numbers; the cascade in ``src.rag.boosts`` keys off those
strings. When the guideline set is republished, override the profile
with a JSON file instead of editing ranking code.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CORPUS_PROFILE_PATH = os.environ.get("CORPUS_PROFILE_PATH", "")


@dataclass(frozen=True)
class DocRule:
    """Substring rule over a chunk's doc id and section path.

    Every ``doc_all`` term must occur in the doc id. When ``doc_any`` or
    ``section_any`` is set, at least one of those terms must also occur.
    """

    doc_all: tuple[str, ...] = ()
    doc_any: tuple[str, ...] = ()
    section_any: tuple[str, ...] = ()

    def matches(self, doc_id: str, section_path: str) -> bool:
        doc = (doc_id or "").lower()
        section = (section_path or "").lower()
        if not all(term in doc for term in self.doc_all):
            return False
        if not self.doc_any and not self.section_any:
            return True
        return any(term in doc for term in self.doc_any) or any(
            term in section for term in self.section_any
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DocRule":
        return cls(
            doc_all=tuple(data.get("doc_all", ())),
            doc_any=tuple(data.get("doc_any", ())),
            section_any=tuple(data.get("section_any", ())),
        )


@dataclass(frozen=True)
class CorpusProfile:
    # Authority / recency boosts
    current_treatment: DocRule = DocRule(doc_all=("module4", "treatment", "2025"))
    current_peds_ds_treatment: DocRule = DocRule(
        doc_all=("module5", "pediatr"),
        section_any=("5.2.", "treatment of drug-susceptible tb in children"),
    )
    diagnosis_module: DocRule = DocRule(
        doc_all=("module3",), doc_any=("diag",), section_any=("diagnosis",)
    )
    current_tpt: DocRule = DocRule(doc_all=("module1", "tpt", "2024"))

    # Drug-susceptible content
    ds_signals: tuple[str, ...] = (
        "drug - susceptible",
        "drug-susceptible",
        "drug susceptible",
        "ds-tb",
        "ds tb",
    )
    ds_chapter: DocRule = DocRule(doc_all=("module4", "treat"), section_any=("chapter 1",))

    # Anchors for proximity and stale-content handling
    dr_treatment_anchor: DocRule = DocRule(
        doc_all=("module4", "treatment"),
        section_any=("chapter 2 : drug-resistant tb treatment",),
    )
    tpt_anchor: DocRule = DocRule(
        doc_all=("module1", "tpt"), section_any=("tb preventive treatment",)
    )

    # Legacy content superseded by the current modules
    legacy_pediatric: DocRule = DocRule(doc_all=("module5", "pediatr"))
    legacy_tpt_sections: tuple[str, ...] = ("3.3.5", "3.3.6", "preventive treatment")
    stale_table_subtypes: tuple[str, ...] = ("regimen", "decision")

    # Forced inclusion at merge time
    guarantee_dr_treatment: DocRule = DocRule(
        doc_all=("module4", "treatment"),
        section_any=("chapter 2 : drug-resistant tb treatment",),
    )
    guarantee_tpt: DocRule = DocRule(
        doc_all=("module1", "tpt", "2024"),
        section_any=("tb preventive treatment", "tb infection"),
    )

    # Factors and caps
    authority_boost: float = 1.03
    ds_penalty: float = 0.6
    neighbor_floor: float = 0.98
    stale_penalty: float = 0.97
    anchor_count: int = 10
    prose_cap: int = 20
    table_cap: int = 8
    guarantee_quota: int = 2
    max_top_k: int = 8

    extra: dict[str, Any] = field(default_factory=dict, compare=False)


DEFAULT_PROFILE = CorpusProfile()


def profile_from_dict(data: dict[str, Any], base: CorpusProfile = DEFAULT_PROFILE) -> CorpusProfile:
    """Overlay a JSON-shaped mapping onto a profile.

    Rule fields take ``{"doc_all": [...], "doc_any": [...], "section_any": [...]}``;
    tuple fields take lists; numeric fields are cast to the field's type.
    Unknown keys are kept in ``extra`` and reported.
    """
    known = {f.name: f for f in fields(CorpusProfile)}
    updates: dict[str, Any] = {}
    unknown: dict[str, Any] = {}

    for key, value in data.items():
        if key not in known or key == "extra":
            unknown[key] = value
            continue
        current = getattr(base, key)
        if isinstance(current, DocRule):
            if not isinstance(value, dict):
                raise ValueError(f"Profile field '{key}' must be an object")
            updates[key] = DocRule.from_dict(value)
        elif isinstance(current, tuple):
            if not isinstance(value, list):
                raise ValueError(f"Profile field '{key}' must be a list")
            updates[key] = tuple(str(v).lower() for v in value)
        elif isinstance(current, int):
            updates[key] = int(value)
        else:
            updates[key] = float(value)

    if unknown:
        logger.warning("Ignoring unknown corpus profile keys: %s", sorted(unknown))
        updates["extra"] = unknown

    return replace(base, **updates)


def load_profile(path: str | None = None) -> CorpusProfile:
    """Load the corpus profile, applying the JSON override when one is configured."""
    profile_path = path if path is not None else CORPUS_PROFILE_PATH
    if not profile_path:
        return DEFAULT_PROFILE

    with Path(profile_path).open(encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError("Corpus profile override must be a JSON object")

    logger.info("Loaded corpus profile override from %s", profile_path)
    return profile_from_dict(data)
