"""
Deduplication components.

These modules partition fetched groups into exact and near duplicate sets
and propose which member of each set to keep.
"""

from groupdedup.deduplication.builder import DuplicateRow, DuplicateSet, classify

__all__ = ["DuplicateRow", "DuplicateSet", "classify"]
