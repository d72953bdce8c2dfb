"""Result models returned across the CLI/automation boundary."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from converge.errors import (
    ConfigValidationError,
    ConvergeError,
    DependencyCycleError,
    DependencyUnsatisfiedError,
    NotFoundError,
    OperationFailure,
)


class ErrorKind(str, Enum):
    """Failure classes surfaced by plugin manager operations."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    DEPENDENCY_UNSATISFIED = "dependency_unsatisfied"
    DEPENDENCY_CYCLE = "dependency_cycle"
    OPERATION_FAILURE = "operation_failure"


class OperationResult(BaseModel):
    """Success/error result of a plugin manager operation."""

    success: bool
    plugin: Optional[str] = None
    message: str = ""
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    warnings: List[str] = Field(default_factory=list)
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, plugin: Optional[str], message: str = "", **kwargs) -> "OperationResult":
        return cls(success=True, plugin=plugin, message=message, **kwargs)

    @classmethod
    def fail(cls, plugin: Optional[str], kind: ErrorKind, error: str, **kwargs) -> "OperationResult":
        return cls(success=False, plugin=plugin, error=error, error_kind=kind, **kwargs)

    def raise_for_error(self) -> None:
        """Raise the exception matching this result's failure class, if any."""
        if self.success:
            return
        if self.error_kind == ErrorKind.NOT_FOUND:
            raise NotFoundError("Plugin", self.plugin or "")
        if self.error_kind == ErrorKind.DEPENDENCY_CYCLE:
            raise DependencyCycleError(self.plugin or "", self.details.get("cycle", []))
        if self.error_kind == ErrorKind.DEPENDENCY_UNSATISFIED:
            names = self.details.get("missing") or self.details.get("dependents") or []
            raise DependencyUnsatisfiedError(self.plugin or "", names, self.error)
        if self.error_kind == ErrorKind.VALIDATION:
            raise ConfigValidationError(self.error)
        if self.error_kind == ErrorKind.OPERATION_FAILURE:
            raise OperationFailure(self.error or "")
        raise ConvergeError(self.error)


class ItemStatus(str, Enum):
    """Outcome class of a single item in a bulk test/apply run."""

    PASSED = "Passed"
    FAILED = "Failed"
    ERROR = "Error"
    APPLIED = "Applied"
    SKIPPED = "Skipped"
    WOULD_APPLY = "WouldApply"


class ItemOutcome(BaseModel):
    """Per-item outcome of a bulk operation."""

    name: str
    type: str
    status: ItemStatus
    message: str = ""
    error: Optional[str] = None
    critical: bool = False
    duration_ms: float = 0.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _result_key(results: Dict[str, Any], name: str) -> str:
    # Duplicate item names are allowed in an aggregate
    if name not in results:
        return name
    index = 2
    while f"{name}#{index}" in results:
        index += 1
    return f"{name}#{index}"


class TestReport(BaseModel):
    """Result of ``ConfigurationAggregate.test_all``."""

    __test__ = False  # not a pytest test class

    aggregate: str
    total: int = 0
    passed: int = 0
    failed: int = 0
    results: Dict[str, ItemOutcome] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None

    def record(self, outcome: ItemOutcome) -> None:
        self.total += 1
        if outcome.status == ItemStatus.PASSED:
            self.passed += 1
        else:
            self.failed += 1
        self.results[_result_key(self.results, outcome.name)] = outcome


class ApplyReport(BaseModel):
    """Result of ``ConfigurationAggregate.apply_all``."""

    aggregate: str
    dry_run: bool = False
    total: int = 0
    applied: int = 0
    skipped: int = 0
    failed: int = 0
    aborted: bool = False
    critical_error: Optional[str] = None
    results: Dict[str, ItemOutcome] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None

    def record(self, outcome: ItemOutcome) -> None:
        self.total += 1
        if outcome.status in (ItemStatus.APPLIED, ItemStatus.WOULD_APPLY):
            self.applied += 1
        elif outcome.status == ItemStatus.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
        self.results[_result_key(self.results, outcome.name)] = outcome

    @property
    def success(self) -> bool:
        return self.failed == 0 and not self.aborted
