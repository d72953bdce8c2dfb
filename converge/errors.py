"""Exception types raised by the convergence engine."""

from typing import Any, List, Optional


class ConvergeError(Exception):
    """Base class for all engine errors."""


class ConfigValidationError(ConvergeError, ValueError):
    """Raised when a parameter is outside its allowed set or a required field is empty."""


class NotFoundError(ConvergeError, LookupError):
    """Raised when a plugin, item, item type or topic does not exist."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} '{name}' not found")


class DependencyUnsatisfiedError(ConvergeError):
    """Raised when plugin dependencies are missing, disabled, or still depended upon."""

    def __init__(self, plugin: str, dependencies: List[str], message: Optional[str] = None):
        self.plugin = plugin
        self.dependencies = list(dependencies)
        if message is None:
            message = (
                f"Dependencies not satisfied for plugin '{plugin}': "
                f"{', '.join(self.dependencies)}"
            )
        super().__init__(message)


class DependencyCycleError(DependencyUnsatisfiedError):
    """Raised when the plugin dependency graph contains a cycle."""

    def __init__(self, plugin: str, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__(
            plugin,
            cycle,
            f"Dependency cycle detected for plugin '{plugin}': {' -> '.join(self.cycle)}",
        )


class OperationFailure(ConvergeError):
    """An item's test/apply failed.

    Args:
        message: Failure description
        critical: When True, a bulk apply stops after this failure
    """

    def __init__(self, message: str, critical: bool = False):
        self.critical = critical
        super().__init__(message)


class CriticalOperationError(OperationFailure):
    """Raised by bulk apply when a critical item fails; carries the partial report."""

    def __init__(self, item_name: str, message: str, report: Any = None):
        self.item_name = item_name
        self.report = report
        super().__init__(f"Critical failure applying '{item_name}': {message}", critical=True)


class NotImplementedByVariantError(ConvergeError, NotImplementedError):
    """An abstract item operation was invoked on a variant that does not provide it."""

    def __init__(self, type_name: str, operation: str):
        self.type_name = type_name
        self.operation = operation
        super().__init__(f"Operation '{operation}' is not implemented by item type '{type_name}'")


class PluginValidationError(ConfigValidationError):
    """Raised when a plugin fails validation on registration."""

    def __init__(self, plugin: str, problems: List[str]):
        self.plugin = plugin
        self.problems = list(problems)
        super().__init__(f"Plugin '{plugin}' is invalid: {'; '.join(self.problems)}")
