"""
Security Module

- Request validation and sanitization
"""

from src.security.input_validation import RetrievalRequest, describe_validation_error, sanitize

__all__ = ["RetrievalRequest", "describe_validation_error", "sanitize"]
