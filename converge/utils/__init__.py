"""Utility functions for the convergence engine."""

from .deep_merge import DEFAULT_IDENTITY_KEYS, deep_merge, element_identity, merge_lists

__all__ = [
    'DEFAULT_IDENTITY_KEYS',
    'deep_merge',
    'element_identity',
    'merge_lists',
]
