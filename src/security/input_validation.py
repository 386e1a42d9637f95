"""
Input Validation for the retrieval endpoint

Validates and normalizes the query request body:
- question must be a non-empty string (control characters stripped)
- top_k and table_row_limit are clamped into range rather than rejected
- scope must be one of the known guideline scopes
"""

import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, StrictBool, ValidationError, field_validator


MIN_TOP_K = 1
MAX_TOP_K = 8
DEFAULT_TOP_K = 8

MIN_TABLE_ROW_LIMIT = 1
MAX_TABLE_ROW_LIMIT = 500
DEFAULT_TABLE_ROW_LIMIT = 150

MISSING_QUESTION_MESSAGE = "Missing or empty 'question' string in request body."

Scope = Literal[
    "prevention",
    "screening",
    "diagnosis",
    "treatment",
    "pediatrics",
    "comorbidities",
]


def sanitize(text: str) -> str:
    """Strip null bytes and control characters except newlines and tabs."""
    text = text.replace("\x00", "")
    text = re.sub(r"[\x01-\x08\x0b\x0c\x0e-\x1f\x7f]", "", text)
    return text.strip()


class RetrievalRequest(BaseModel):
    """Validated retrieval request."""

    model_config = ConfigDict(extra="ignore")

    question: str
    top_k: int = DEFAULT_TOP_K
    scope: Scope | None = None
    include_table_rows: StrictBool = False
    table_row_limit: int = DEFAULT_TABLE_ROW_LIMIT

    @field_validator("question")
    @classmethod
    def validate_question(cls, v: str) -> str:
        v = sanitize(v)
        if not v:
            raise ValueError(MISSING_QUESTION_MESSAGE)
        return v

    @field_validator("top_k", mode="before")
    @classmethod
    def default_top_k(cls, v: Any) -> Any:
        return DEFAULT_TOP_K if v is None else v

    @field_validator("top_k")
    @classmethod
    def clamp_top_k(cls, v: int) -> int:
        return max(MIN_TOP_K, min(v, MAX_TOP_K))

    @field_validator("scope", mode="before")
    @classmethod
    def normalize_scope(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            return v or None
        return v

    @field_validator("table_row_limit", mode="before")
    @classmethod
    def default_table_row_limit(cls, v: Any) -> Any:
        return DEFAULT_TABLE_ROW_LIMIT if v is None else v

    @field_validator("table_row_limit")
    @classmethod
    def clamp_table_row_limit(cls, v: int) -> int:
        return max(MIN_TABLE_ROW_LIMIT, min(v, MAX_TABLE_ROW_LIMIT))


def describe_validation_error(exc: ValidationError) -> str:
    """One-line message for the first validation failure."""
    errors = exc.errors()
    if not errors:
        return "Invalid request body."
    first = errors[0]
    field = first["loc"][0] if first.get("loc") else None
    if field == "question":
        return MISSING_QUESTION_MESSAGE
    if field == "scope":
        return "Invalid 'scope'. Expected one of: " + ", ".join(Scope.__args__) + "."
    return f"Invalid '{field}': {first.get('msg', 'invalid value')}"
