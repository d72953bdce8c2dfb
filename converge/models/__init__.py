"""Data models shared across the engine."""

from .recommendation import Priority, Recommendation
from .results import (
    ApplyReport,
    ErrorKind,
    ItemOutcome,
    ItemStatus,
    OperationResult,
    TestReport,
)

__all__ = [
    'ApplyReport',
    'ErrorKind',
    'ItemOutcome',
    'ItemStatus',
    'OperationResult',
    'Priority',
    'Recommendation',
    'TestReport',
]
