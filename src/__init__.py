"""
TB Guideline Retrieval - ranking engine for WHO tuberculosis guidance

Retrieves and ranks guideline passages and tables for a clinical question.

Features:
- Keyword intent and scope classification
- Dual-channel (prose + table) cosine ranking over a precomputed store
- Edition-aware boost/penalty cascade
- Subtype-aware rendering of table attachments
- Per-query retrieval log
"""

__version__ = "0.1.0"
__author__ = "TB Guideline Retrieval Team"
