"""
Function-calling tool definition for agents that consume this service.
"""

from typing import Any

from src.security.input_validation import (
    DEFAULT_TABLE_ROW_LIMIT,
    DEFAULT_TOP_K,
    MAX_TABLE_ROW_LIMIT,
    MAX_TOP_K,
    MIN_TABLE_ROW_LIMIT,
    MIN_TOP_K,
    Scope,
)

TOOL_NAME = "tb_rag_query"


def build_tool_schema() -> dict[str, Any]:
    """JSON tool definition mirroring the retrieval request body."""
    return {
        "type": "function",
        "function": {
            "name": TOOL_NAME,
            "description": (
                "Retrieve ranked passages and rendered tables from the WHO TB "
                "guideline corpus for a clinical question."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "question": {
                        "type": "string",
                        "minLength": 1,
                        "description": "The clinical question to search for.",
                    },
                    "top_k": {
                        "type": "integer",
                        "minimum": MIN_TOP_K,
                        "maximum": MAX_TOP_K,
                        "default": DEFAULT_TOP_K,
                        "description": "Number of chunks to return.",
                    },
                    "scope": {
                        "type": "string",
                        "enum": list(Scope.__args__),
                        "description": "Restrict retrieval to one guideline topic.",
                    },
                    "include_table_rows": {
                        "type": "boolean",
                        "default": False,
                        "description": "Return raw table rows alongside rendered table text.",
                    },
                    "table_row_limit": {
                        "type": "integer",
                        "minimum": MIN_TABLE_ROW_LIMIT,
                        "maximum": MAX_TABLE_ROW_LIMIT,
                        "default": DEFAULT_TABLE_ROW_LIMIT,
                        "description": "Maximum raw rows per table when rows are included.",
                    },
                },
                "required": ["question"],
            },
        },
    }
