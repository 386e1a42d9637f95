"""
API helpers: agent tool definition.
"""

from src.api.tool_schema import TOOL_NAME, build_tool_schema

__all__ = ["TOOL_NAME", "build_tool_schema"]
