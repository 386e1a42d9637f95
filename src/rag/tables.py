"""
Table Enrichment Pipeline

Guideline tables are stored as CSV attachments with generic column names
(``ColumnA``, ``ColumnB``, ...) and a ``row_index`` column; row 1 holds the
real header labels. This module:

1. Resolves an attachment path under the table root
2. Loads raw rows with pandas
3. Re-keys data rows by the header row ("logical rows")
4. Detects a table subtype from caption, section and headers
5. Renders a subtype-specific plain-text summary, falling back to a
   generic row dump when the subtype's expectations do not hold
"""

import logging
import os
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import pandas as pd

logger = logging.getLogger(__name__)

TABLE_ROOT = os.environ.get("TABLE_ROOT", "")

ROW_INDEX_KEY = "_row_index"


class TableLoadError(Exception):
    """Raised when a table attachment cannot be resolved or parsed."""


class TableSubtype(str, Enum):
    DOSING = "dosing"
    PEDS_DOSING = "peds_dosing"
    DECISION = "decision"
    REGIMEN = "regimen"
    TIMELINE = "timeline"
    INTERACTION = "interaction"
    TOXICITY = "toxicity"
    GENERIC = "generic"


@dataclass
class NormalizedTable:
    header_row: dict[str, str] | None
    rows: list[dict[str, str]]
    headers: list[str]


@dataclass
class TableRendering:
    text: str
    debug: dict[str, Any] = field(default_factory=dict)


@dataclass
class TableEnrichment:
    subtype: TableSubtype
    text: str
    row_count: int
    debug: dict[str, Any]
    rows: list[dict[str, str]] | None = None


# ============================================
# Path Resolution + Loading
# ============================================

_PUBLIC_PREFIXES = ("public/rag/", "public/", "rag/")


def resolve_table_path(attachment_path: str, table_root: str | Path) -> Path:
    """Map an attachment path from chunk metadata onto the table root.

    Accepts paths written relative to the repository (``public/rag/...``),
    to ``public/`` or ``rag/``, or to the table root itself. Paths that
    escape the table root are rejected.
    """
    if not attachment_path:
        raise TableLoadError("Chunk has no attachment_path")

    cleaned = str(attachment_path).replace("\\", "/")
    cleaned = re.sub(r"^(\./)+", "", cleaned)
    cleaned = re.sub(r"^\.\./", "", cleaned)
    for prefix in _PUBLIC_PREFIXES:
        if cleaned.startswith(prefix):
            cleaned = cleaned[len(prefix) :]
            break

    root = Path(table_root).resolve()
    resolved = (root / cleaned).resolve()
    if not resolved.is_relative_to(root):
        raise TableLoadError(f"Attachment path escapes table root: {attachment_path}")
    return resolved


def load_table_rows(path: Path) -> list[dict[str, str]]:
    """Read a table CSV as a list of string-valued row dicts."""

    def _skip_bad_line(bad_line: list[str]) -> None:
        logger.warning("Skipping malformed row in %s: %s", path, bad_line)
        return None

    try:
        df = pd.read_csv(
            path,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            engine="python",
            on_bad_lines=_skip_bad_line,
        )
    except FileNotFoundError as e:
        raise TableLoadError(f"Table file not found: {path}") from e
    except pd.errors.EmptyDataError:
        logger.warning("Table file is empty: %s", path)
        return []
    except pd.errors.ParserError as e:
        raise TableLoadError(f"Failed to parse table {path}: {e}") from e

    # Short rows come back as NaN even with keep_default_na=False
    return df.fillna("").to_dict(orient="records")


# ============================================
# Normalization
# ============================================

_CONTENT_COLUMN = re.compile(r"^column[a-z]{1,2}$")


def _cell(row: dict[str, Any], key: str) -> str:
    value = row.get(key)
    if value is None or (pd.api.types.is_scalar(value) and pd.isna(value)):
        return ""
    return str(value).strip()


def normalize_table_rows(raw_rows: Sequence[dict[str, Any]]) -> NormalizedTable:
    """Re-key data rows by the labels found in the header row.

    The header row is the row whose ``row_index`` is 1, else the first row.
    Only ``ColumnX`` content columns with a non-empty header label are kept.
    """
    if not raw_rows:
        return NormalizedTable(header_row=None, rows=[], headers=[])

    header_row = next((r for r in raw_rows if _cell(r, "row_index") == "1"), raw_rows[0])
    header_index = _cell(header_row, "row_index")

    labels: dict[str, str] = {}
    for col in header_row:
        if not _CONTENT_COLUMN.match(str(col).lower()):
            continue
        label = _cell(header_row, col)
        if label and label not in labels.values():
            labels[col] = label

    rows = []
    for row in raw_rows:
        if row is header_row or (header_index and _cell(row, "row_index") == header_index):
            continue
        logical = {label: _cell(row, col) for col, label in labels.items()}
        logical[ROW_INDEX_KEY] = _cell(row, "row_index")
        rows.append(logical)

    return NormalizedTable(header_row=dict(header_row), rows=rows, headers=list(labels.values()))


# ============================================
# Subtype Detection
# ============================================

_DOSING_CAPTION = re.compile(
    r"dose|dosage|dosing|mg/kg|mg/ day|mg per kg|weight band|weight-band"
)
_DOSING_HEADER = re.compile(r"kg|dose|weight band|weight-band")
_PEDIATRIC_CAPTION = re.compile(r"child|paediatric|pediatric|infant|neonate")
_DECISION_CAPTION = re.compile(r"eligib|criteria|if.*then|decision|indication|when to|option")
_DECISION_HEADER = re.compile(r"criteria|recommendation|option|action")
_REGIMEN = re.compile(r"regimen")
_REGIMEN_DRUG_HEADER = re.compile(r"drug|component|medicine|combination")
_TIMELINE_CAPTION = re.compile(r"monitoring|follow-up|follow up|timeline|schedule")
_TIMELINE_HEADER = re.compile(r"baseline|month|week|visit|timepoint")
_INTERACTION_CAPTION = re.compile(r"interaction|drug-drug|drug drug|ddi|qt|contraindication")
_INTERACTION_HEADER = re.compile(r"interaction|effect|recommendation|ddi")
_TOXICITY_CAPTION = re.compile(
    r"toxicity|adverse event|side effect|hepatotox|neuropathy|ae management"
)
_TOXICITY_HEADER = re.compile(r"grade|toxicity|ctcae")


def detect_table_subtype(chunk: Any, headers: Sequence[str]) -> TableSubtype:
    """Classify a table by caption, section path and header labels.

    Checked in order; the first match wins.
    """
    caption = (getattr(chunk, "caption", None) or "").lower()
    section = (getattr(chunk, "section_path", None) or "").lower()
    lowered = [h.lower() for h in headers]

    def any_header(pattern: re.Pattern) -> bool:
        return any(pattern.search(h) for h in lowered)

    if _DOSING_CAPTION.search(caption) or any_header(_DOSING_HEADER):
        if _PEDIATRIC_CAPTION.search(caption) or "child" in section:
            return TableSubtype.PEDS_DOSING
        return TableSubtype.DOSING
    if _DECISION_CAPTION.search(caption) or any_header(_DECISION_HEADER):
        return TableSubtype.DECISION
    if _REGIMEN.search(caption) or (any_header(_REGIMEN) and any_header(_REGIMEN_DRUG_HEADER)):
        return TableSubtype.REGIMEN
    if _TIMELINE_CAPTION.search(caption) or any_header(_TIMELINE_HEADER):
        return TableSubtype.TIMELINE
    if _INTERACTION_CAPTION.search(caption) or any_header(_INTERACTION_HEADER):
        return TableSubtype.INTERACTION
    if _TOXICITY_CAPTION.search(caption) or any_header(_TOXICITY_HEADER):
        return TableSubtype.TOXICITY
    return TableSubtype.GENERIC


# ============================================
# Renderer Helpers
# ============================================


def _caption(chunk: Any, default: str) -> str:
    return getattr(chunk, "caption", None) or default


def _first_header(headers: Sequence[str], pattern: re.Pattern) -> str | None:
    return next((h for h in headers if pattern.search(h.lower())), None)


def _labelled(row: dict[str, str], keys: Sequence[str]) -> list[str]:
    return [f"{k}: {_cell(row, k)}" for k in keys if _cell(row, k)]


def _empty_rendering(chunk: Any, default_caption: str, renderer: str, table: NormalizedTable) -> TableRendering:
    return TableRendering(
        text=f"{_caption(chunk, default_caption)}. (No rows found.)",
        debug={"renderer": renderer, "header_keys": table.headers, "row_count": len(table.rows)},
    )


def _fallback(chunk: Any, table: NormalizedTable, renderer: str, note: str) -> TableRendering:
    logger.warning(
        "Table renderer %s fell back to generic for chunk %s (%s)",
        renderer,
        getattr(chunk, "chunk_id", None),
        note,
    )
    generic = render_generic_table(chunk, table)
    return TableRendering(text=generic.text, debug={**generic.debug, "renderer": renderer, "note": note})


# ============================================
# Dosing Renderers
# ============================================

_PER_KG = re.compile(r"mg\s*/\s*kg|mg per kg")
_BAND_HEADER = re.compile(r"kg|weight band|weight-band|weight range| to <|<=|>=")
_MED_HEADER = re.compile(r"medicine|drug|product|regimen|group|tb drug")
_FORM_HEADER = re.compile(r"formulation|dispersible|fdc|\bform\b")


def _is_band_header(header: str) -> bool:
    """Weight-band header; per-kilogram dose columns are not bands."""
    return bool(_BAND_HEADER.search(_PER_KG.sub("", header.lower())))


def _band_label_key(headers: Sequence[str]) -> str | None:
    """A weight-band label column (bands run down the rows), e.g. ``Weight band``."""
    for h in headers:
        if _is_band_header(h) and not re.search(r"\d", h):
            return h
    return None


def _render_bands_in_rows(
    chunk: Any,
    table: NormalizedTable,
    band_key: str,
    summary: str,
    default_caption: str,
    renderer: str,
    skip: Sequence[str] = (),
) -> TableRendering:
    drug_keys = [h for h in table.headers if h != band_key and h not in skip]
    lines = [f"{_caption(chunk, default_caption)}. {summary}"]
    for drug in drug_keys:
        parts = [
            f"{_cell(row, band_key)}: {_cell(row, drug)}"
            for row in table.rows
            if _cell(row, band_key) and _cell(row, drug)
        ]
        if parts:
            lines.append(f"{drug}: {'; '.join(parts)}")
    if len(lines) == 1:
        return _fallback(chunk, table, renderer, "fallback_generic_no_band_values")
    return TableRendering(
        text="\n".join(lines),
        debug={
            "renderer": renderer,
            "header_keys": table.headers,
            "row_count": len(table.rows),
            "orientation": "bands_in_rows",
            "band_key": band_key,
            "drug_keys": drug_keys,
        },
    )


def render_dosing_table(chunk: Any, table: NormalizedTable) -> TableRendering:
    default_caption = "Dosing table"
    summary = "Weight-band dosing summary:"
    headers = table.headers
    if not table.rows or not headers:
        return _empty_rendering(chunk, default_caption, "dosing", table)

    band_key = _band_label_key(headers)
    if band_key and len(headers) > 1:
        return _render_bands_in_rows(chunk, table, band_key, summary, default_caption, "dosing")

    band_keys = [h for h in headers if _is_band_header(h)]
    if not band_keys:
        return _fallback(chunk, table, "dosing", "fallback_generic_no_weight_bands")

    med_key = _first_header(headers, _MED_HEADER) or next(
        (h for h in headers if h not in band_keys), headers[0]
    )
    lines = [f"{_caption(chunk, default_caption)}. {summary}"]
    for row in table.rows:
        med = _cell(row, med_key)
        if not med:
            continue
        parts = _labelled(row, band_keys) or _labelled(row, headers)
        if parts:
            lines.append(f"{med}: {'; '.join(parts)}")

    if len(lines) == 1:
        return _fallback(chunk, table, "dosing", "fallback_generic_no_band_values")

    return TableRendering(
        text="\n".join(lines),
        debug={
            "renderer": "dosing",
            "header_keys": headers,
            "row_count": len(table.rows),
            "orientation": "bands_in_columns",
            "med_key": med_key,
            "weight_band_keys": band_keys,
        },
    )


def render_peds_dosing_table(chunk: Any, table: NormalizedTable) -> TableRendering:
    default_caption = "Paediatric dosing table"
    summary = "Paediatric weight-band dosing summary:"
    headers = table.headers
    if not table.rows or not headers:
        return _empty_rendering(chunk, default_caption, "peds_dosing", table)

    form_key = _first_header(headers, _FORM_HEADER)

    band_key = _band_label_key(headers)
    if band_key and len(headers) > 1:
        skip = (form_key,) if form_key else ()
        return _render_bands_in_rows(
            chunk, table, band_key, summary, default_caption, "peds_dosing", skip
        )

    band_keys = [h for h in headers if _is_band_header(h)]
    if not band_keys:
        return _fallback(chunk, table, "peds_dosing", "fallback_generic_no_weight_bands")

    med_key = _first_header(headers, _MED_HEADER) or headers[0]
    med_is_band = med_key in band_keys
    other_keys = [h for h in headers if h not in (med_key, form_key) and h not in band_keys]
    extra_band_keys = [k for k in band_keys if k != med_key] if med_is_band else []

    lines = [f"{_caption(chunk, default_caption)}. {summary}"]
    for row in table.rows:
        med = _cell(row, med_key)
        if not med:
            continue
        label = f"{med} ({_cell(row, form_key)})" if form_key and _cell(row, form_key) else med
        band_parts = _labelled(row, band_keys)
        dose_parts = _labelled(row, other_keys + extra_band_keys)
        if not band_parts and not dose_parts:
            cells = _labelled(row, headers)
            if cells:
                lines.append(f"{label} -> {'; '.join(cells)}")
            continue
        parts = [f"{med_key}: {med}"] if med_is_band else band_parts
        lines.append(f"{label} -> {'; '.join(parts + dose_parts)}")

    if len(lines) == 1:
        return _fallback(chunk, table, "peds_dosing", "fallback_generic_no_band_values")

    return TableRendering(
        text="\n".join(lines),
        debug={
            "renderer": "peds_dosing",
            "header_keys": headers,
            "row_count": len(table.rows),
            "orientation": "bands_in_columns",
            "med_key": med_key,
            "form_key": form_key,
            "weight_band_keys": band_keys,
        },
    )


# ============================================
# Regimen + Decision Renderers
# ============================================

_REGIMEN_KEY = re.compile(r"regimen|name|strategy|option")
_DRUGS_KEY = re.compile(r"drug|component|medicine|composition")
_DURATION_KEY = re.compile(r"duration|months|weeks|days|length of treatment")


def render_regimen_table(chunk: Any, table: NormalizedTable) -> TableRendering:
    default_caption = "Regimen composition table"
    headers = table.headers
    if not table.rows or not headers:
        return _empty_rendering(chunk, default_caption, "regimen", table)

    regimen_key = _first_header(headers, _REGIMEN_KEY) or headers[0]
    drugs_key = _first_header(headers, _DRUGS_KEY)
    duration_key = _first_header(headers, _DURATION_KEY)

    lines = [f"{_caption(chunk, default_caption)}. Regimen components and options:"]
    for i, row in enumerate(table.rows, start=1):
        regimen = _cell(row, regimen_key)
        cells = _labelled(row, headers)
        if not regimen:
            if cells:
                lines.append(f"Row {i}: {'; '.join(cells)}")
            continue
        parts = []
        if drugs_key and _cell(row, drugs_key):
            parts.append(_cell(row, drugs_key))
        if duration_key and _cell(row, duration_key):
            parts.append(f"duration: {_cell(row, duration_key)}")
        if parts:
            lines.append(f"{regimen} - {'; '.join(parts)}")
        else:
            lines.append(f"{regimen}: {'; '.join(cells)}")

    return TableRendering(
        text="\n".join(lines),
        debug={
            "renderer": "regimen",
            "header_keys": headers,
            "row_count": len(table.rows),
            "regimen_key": regimen_key,
            "drugs_key": drugs_key,
            "duration_key": duration_key,
        },
    )


_CONDITION_HEADER = re.compile(
    r"if|criteria|condition|situation|scenario|finding|result|status|baseline|risk"
)
_ACTION_HEADER = re.compile(
    r"then|recommendation|action|management|treatment|decision|next step|regimen"
)


def render_decision_table(chunk: Any, table: NormalizedTable) -> TableRendering:
    default_caption = "Decision table"
    headers = table.headers
    if not table.rows or not headers:
        return _empty_rendering(chunk, default_caption, "decision", table)

    lines = [f"{_caption(chunk, default_caption)}. IF-THEN decision rules:"]
    rules = 0
    for i, row in enumerate(table.rows, start=1):
        conditions: list[str] = []
        actions: list[str] = []
        others: list[str] = []
        for h in headers:
            value = _cell(row, h)
            if not value:
                continue
            label = f"{h}: {value}"
            if _ACTION_HEADER.search(h.lower()):
                actions.append(label)
            elif _CONDITION_HEADER.search(h.lower()):
                conditions.append(label)
            else:
                others.append(label)

        if not conditions and not actions:
            if others:
                lines.append(f"Row {i}: {'; '.join(others)}")
            continue
        if not conditions:
            conditions = others
        elif not actions:
            actions = others

        cond_text = "; ".join(conditions) or "the criteria in this row are met"
        action_text = "; ".join(actions) or "see other columns in this row for recommended action"
        lines.append(f"IF {cond_text} THEN {action_text}")
        rules += 1

    if not rules:
        return _fallback(chunk, table, "decision", "fallback_generic_no_if_then_rows")

    return TableRendering(
        text="\n".join(lines),
        debug={
            "renderer": "decision",
            "header_keys": headers,
            "row_count": len(table.rows),
            "rows_with_if_then": rules,
        },
    )


# ============================================
# Timeline Renderer
# ============================================

_TIME_LIKE = re.compile(
    r"baseline|month|week|day|visit|timepoint|end of treatment|posttreatment|follow[- ]?up"
)
_TIME_NUMBERED = re.compile(r"(month|week|day)\s*\d+")


def looks_time_like(value: str | None) -> bool:
    if not value:
        return False
    s = str(value).lower()
    return bool(_TIME_LIKE.search(s) or _TIME_NUMBERED.search(s))


def guess_timeline_orientation(table: NormalizedTable) -> dict[str, Any]:
    """Timepoints across the columns ("cols"), down the first column ("rows"), or unknown."""
    headers = table.headers
    if not headers:
        return {"orientation": "unknown"}

    time_headers = [h for h in headers if looks_time_like(h)]
    if len(time_headers) >= 2:
        entity_header = next((h for h in headers if h not in time_headers), headers[0])
        return {"orientation": "cols", "entity_header": entity_header, "time_headers": time_headers}

    time_key = headers[0]
    sample = table.rows[:6]
    if sum(1 for r in sample if looks_time_like(_cell(r, time_key))) >= 2:
        return {"orientation": "rows", "time_key": time_key, "entity_headers": headers[1:]}

    return {"orientation": "unknown"}


def render_timeline_table(chunk: Any, table: NormalizedTable) -> TableRendering:
    default_caption = "Monitoring schedule"
    headers = table.headers
    if not table.rows or not headers:
        return _empty_rendering(chunk, default_caption, "timeline", table)

    info = guess_timeline_orientation(table)
    lines = [f"{_caption(chunk, default_caption)}. Follow-up schedule over time:"]

    if info["orientation"] == "cols":
        for row in table.rows:
            entity = _cell(row, info["entity_header"])
            parts = _labelled(row, info["time_headers"])
            if entity and parts:
                lines.append(f"For {entity}: {'; '.join(parts)}")
    elif info["orientation"] == "rows":
        for row in table.rows:
            when = _cell(row, info["time_key"])
            parts = _labelled(row, info["entity_headers"])
            if when and parts:
                lines.append(f"At {when}: {'; '.join(parts)}")

    if len(lines) == 1:
        return _fallback(chunk, table, "timeline", "fallback_generic_unknown_orientation")

    return TableRendering(
        text="\n".join(lines),
        debug={
            "renderer": "timeline",
            "header_keys": headers,
            "row_count": len(table.rows),
            **info,
        },
    )


# ============================================
# Interaction + Toxicity Renderers
# ============================================

_DRUG_HEADER = re.compile(
    r"drug ?1|drug ?2|drug a|drug b|medicine 1|medicine 2|comedication|arv|antiretroviral"
    r"|tb drug|rifampin|rifampicin|rifapentine|drug|medicine|regimen"
)
_EFFECT_KEY = re.compile(r"interaction|effect|impact|change in level")
_RECOMMENDATION_KEY = re.compile(r"recommendation|management|action|dose adjustment|avoid")


def render_interaction_table(chunk: Any, table: NormalizedTable) -> TableRendering:
    default_caption = "Drug-drug interaction table"
    headers = table.headers
    if not table.rows or not headers:
        return _empty_rendering(chunk, default_caption, "interaction", table)

    effect_key = _first_header(headers, _EFFECT_KEY)
    rec_key = _first_header(headers, _RECOMMENDATION_KEY)
    drug_headers = [h for h in headers if _DRUG_HEADER.search(h.lower())]
    if not drug_headers:
        return _fallback(chunk, table, "interaction", "fallback_generic_no_drug_headers")

    lines = [f"{_caption(chunk, default_caption)}. Drug combinations and recommendations:"]
    combos = 0
    for i, row in enumerate(table.rows, start=1):
        drugs = [_cell(row, h) for h in drug_headers if _cell(row, h)]
        effect = _cell(row, effect_key) if effect_key else ""
        rec = _cell(row, rec_key) if rec_key else ""

        if not drugs and not effect and not rec:
            cells = _labelled(row, headers)
            if cells:
                lines.append(f"Row {i}: {'; '.join(cells)}")
            continue

        line = f"Combination {' + '.join(drugs)}" if drugs else ""
        if effect:
            line += (" - " if line else "") + f"effect: {effect}"
        if rec:
            line += ("; " if line else "") + f"recommendation: {rec}"
        lines.append(line)
        if drugs:
            combos += 1

    if not combos:
        return _fallback(chunk, table, "interaction", "fallback_generic_no_combos")

    return TableRendering(
        text="\n".join(lines),
        debug={
            "renderer": "interaction",
            "header_keys": headers,
            "row_count": len(table.rows),
            "drug_headers": drug_headers,
            "effect_key": effect_key,
            "recommendation_key": rec_key,
            "rows_with_combos": combos,
        },
    )


_GRADE_KEY = re.compile(r"grade|severity|ctcae")
_DESCRIPTION_KEY = re.compile(r"description|finding|toxicity|event|symptom")
_MANAGEMENT_KEY = re.compile(r"management|action|recommendation|dose adjustment|stop")


def render_toxicity_table(chunk: Any, table: NormalizedTable) -> TableRendering:
    default_caption = "Toxicity / adverse event table"
    headers = table.headers
    if not table.rows or not headers:
        return _empty_rendering(chunk, default_caption, "toxicity", table)

    grade_key = _first_header(headers, _GRADE_KEY) or headers[0]
    desc_key = _first_header(headers, _DESCRIPTION_KEY)
    mgmt_key = _first_header(headers, _MANAGEMENT_KEY)

    lines = [f"{_caption(chunk, default_caption)}. Toxicity grades and management:"]
    graded = 0
    for i, row in enumerate(table.rows, start=1):
        grade = _cell(row, grade_key)
        desc = _cell(row, desc_key) if desc_key else ""
        mgmt = _cell(row, mgmt_key) if mgmt_key else ""

        if not grade and not desc and not mgmt:
            cells = _labelled(row, headers)
            if cells:
                lines.append(f"Row {i}: {'; '.join(cells)}")
            continue

        parts = [p for p in (desc, f"management: {mgmt}" if mgmt else "") if p]
        if parts:
            lines.append(f"Grade {grade}: {' - '.join(parts)}")
        else:
            lines.append(f"Grade {grade}: see table row {i}")
        if grade:
            graded += 1

    if not graded:
        return _fallback(chunk, table, "toxicity", "fallback_generic_no_grades")

    return TableRendering(
        text="\n".join(lines),
        debug={
            "renderer": "toxicity",
            "header_keys": headers,
            "row_count": len(table.rows),
            "grade_key": grade_key,
            "description_key": desc_key,
            "management_key": mgmt_key,
            "rows_with_grades": graded,
        },
    )


# ============================================
# Generic Renderer + Dispatch
# ============================================


def render_generic_table(chunk: Any, table: NormalizedTable) -> TableRendering:
    default_caption = "Table"
    headers = table.headers
    if not table.rows or not headers:
        return _empty_rendering(chunk, default_caption, "generic", table)

    lines = [f"{_caption(chunk, default_caption)}. Columns: {', '.join(headers)}"]
    for i, row in enumerate(table.rows, start=1):
        cells = "; ".join(f"{h}: {_cell(row, h)}" for h in headers)
        lines.append(f"Row {i}: {cells}")

    return TableRendering(
        text="\n".join(lines),
        debug={"renderer": "generic", "header_keys": headers, "row_count": len(table.rows)},
    )


Renderer = Callable[[Any, NormalizedTable], TableRendering]

RENDERERS: dict[TableSubtype, Renderer] = {
    TableSubtype.DOSING: render_dosing_table,
    TableSubtype.PEDS_DOSING: render_peds_dosing_table,
    TableSubtype.REGIMEN: render_regimen_table,
    TableSubtype.DECISION: render_decision_table,
    TableSubtype.TIMELINE: render_timeline_table,
    TableSubtype.INTERACTION: render_interaction_table,
    TableSubtype.TOXICITY: render_toxicity_table,
    TableSubtype.GENERIC: render_generic_table,
}


def render_table(chunk: Any, raw_rows: Sequence[dict[str, Any]]) -> tuple[TableSubtype, TableRendering]:
    """Normalize, classify and render raw CSV rows for one table chunk."""
    table = normalize_table_rows(raw_rows)
    subtype = detect_table_subtype(chunk, table.headers)
    renderer = RENDERERS.get(subtype, render_generic_table)
    rendering = renderer(chunk, table)
    base_debug = {
        "subtype_guess": subtype.value,
        "row_count": len(table.rows),
        "has_header_row": table.header_row is not None,
    }
    return subtype, TableRendering(text=rendering.text, debug={**base_debug, **rendering.debug})


def enrich_table_chunk(
    chunk: Any,
    table_root: str | Path,
    include_rows: bool = False,
    row_limit: int = 150,
) -> TableEnrichment | None:
    """Load and render a table chunk's attachment.

    Returns None for non-table chunks, chunks without an attachment, and
    attachments that cannot be read; the caller keeps the chunk as is.
    """
    if not getattr(chunk, "is_table", False) or not getattr(chunk, "attachment_path", None):
        return None

    try:
        path = resolve_table_path(chunk.attachment_path, table_root)
        raw_rows = load_table_rows(path)
        subtype, rendering = render_table(chunk, raw_rows)
    except (TableLoadError, OSError, ValueError) as e:
        logger.warning(
            "Failed to load or render table for chunk %s (path: %s): %s",
            getattr(chunk, "chunk_id", None),
            chunk.attachment_path,
            e,
        )
        return None

    return TableEnrichment(
        subtype=subtype,
        text=rendering.text,
        row_count=len(raw_rows),
        debug=rendering.debug,
        rows=list(raw_rows[: max(1, row_limit)]) if include_rows else None,
    )
