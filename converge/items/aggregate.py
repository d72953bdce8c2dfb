"""Configuration aggregate - ordered collection of items processed together."""

import json
import logging
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Union

import yaml

from converge.constants import MAX_PARALLEL_WORKERS
from converge.errors import ConfigValidationError, CriticalOperationError, OperationFailure
from converge.items.base import ConfigurationItem
from converge.models.results import ApplyReport, ItemOutcome, ItemStatus, TestReport

if TYPE_CHECKING:
    from converge.items.factory import ItemFactory

logger = logging.getLogger(__name__)

TypeFilter = Optional[Union[str, Iterable[str]]]


class ConfigurationAggregate:
    """Named, ordered collection of configuration items.

    Args:
        name: Aggregate name
        items: Initial items
        metadata: Free-form metadata
        version: Configuration version string
        executor_factory: Callable creating the worker pool for parallel runs
    """

    def __init__(
        self,
        name: str,
        items: Optional[Iterable[ConfigurationItem]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        version: str = "1.0.0",
        executor_factory: Callable[..., Executor] = ThreadPoolExecutor,
    ):
        if not name or not name.strip():
            raise ConfigValidationError("Aggregate name cannot be empty")
        self.name = name
        self.metadata: Dict[str, Any] = dict(metadata or {})
        self.version = version
        self.created = datetime.now(timezone.utc)
        self.last_modified = self.created
        self._items: List[ConfigurationItem] = []
        self._executor_factory = executor_factory
        for item in items or []:
            self.add_item(item)

    # ------------------------------------------------------------------
    # Collection management
    # ------------------------------------------------------------------

    @property
    def items(self) -> List[ConfigurationItem]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items))

    def add_item(self, item: ConfigurationItem) -> None:
        """Append an item.

        Raises:
            ConfigValidationError: If ``item`` is None
        """
        if item is None:
            raise ConfigValidationError("Cannot add a null item to an aggregate")
        if not isinstance(item, ConfigurationItem):
            raise ConfigValidationError(f"Not a configuration item: {item!r}")
        if any(existing.name == item.name for existing in self._items):
            logger.warning(f"Aggregate '{self.name}' already contains an item named '{item.name}'")
        self._items.append(item)
        self._touch()

    def remove_item(self, name: str) -> bool:
        """Remove the first item named ``name``; return False if none matched."""
        for index, item in enumerate(self._items):
            if item.name == name:
                del self._items[index]
                self._touch()
                return True
        return False

    def get_item(self, name: str) -> Optional[ConfigurationItem]:
        return next((item for item in self._items if item.name == name), None)

    def set_metadata(self, key: str, value: Any) -> None:
        self.metadata[key] = value
        self._touch()

    def select_items(
        self,
        include_type: TypeFilter = None,
        exclude_type: TypeFilter = None,
        enabled_only: bool = True,
    ) -> List[ConfigurationItem]:
        """Return items matching the type filters, in aggregate order.

        Both filters may be combined; an item must pass the include filter and
        must not match the exclude filter.
        """
        include = _as_type_set(include_type)
        exclude = _as_type_set(exclude_type)
        selected = []
        for item in self._items:
            if enabled_only and not item.enabled:
                continue
            if include is not None and item.type not in include:
                continue
            if exclude is not None and item.type in exclude:
                continue
            selected.append(item)
        return selected

    def _touch(self) -> None:
        self.last_modified = datetime.now(timezone.utc)

    # ------------------------------------------------------------------
    # Bulk test
    # ------------------------------------------------------------------

    def test_all(
        self,
        include_type: TypeFilter = None,
        exclude_type: TypeFilter = None,
        parallel: bool = False,
        max_workers: Optional[int] = None,
    ) -> TestReport:
        """Test every enabled item.

        Exceptions raised by ``test()`` are recorded with status ``Error`` and
        counted as failures; they never abort the run.
        """
        items = self.select_items(include_type, exclude_type)
        report = TestReport(aggregate=self.name)
        logger.info(f"Testing {len(items)} item(s) in aggregate '{self.name}'")

        for outcome in self._run(items, self._test_item, parallel, max_workers):
            report.record(outcome)

        report.finished_at = datetime.now(timezone.utc)
        logger.info(
            f"Test complete for '{self.name}': "
            f"{report.passed}/{report.total} passed, {report.failed} failed"
        )
        return report

    @staticmethod
    def _test_item(item: ConfigurationItem) -> ItemOutcome:
        started = time.perf_counter()
        try:
            passed = item.test()
        except Exception as e:
            logger.error(f"Test of item '{item.name}' raised: {e}")
            return ItemOutcome(
                name=item.name,
                type=item.type,
                status=ItemStatus.ERROR,
                error=str(e),
                duration_ms=_elapsed_ms(started),
            )
        status = ItemStatus.PASSED if passed else ItemStatus.FAILED
        return ItemOutcome(
            name=item.name,
            type=item.type,
            status=status,
            message="In desired state" if passed else "Not in desired state",
            duration_ms=_elapsed_ms(started),
        )

    # ------------------------------------------------------------------
    # Bulk apply
    # ------------------------------------------------------------------

    def apply_all(
        self,
        force: bool = False,
        include_type: TypeFilter = None,
        exclude_type: TypeFilter = None,
        parallel: bool = False,
        max_workers: Optional[int] = None,
        dry_run: bool = False,
    ) -> ApplyReport:
        """Apply every enabled item that is not already in its desired state.

        Args:
            force: Apply even when ``test()`` already returns True
            include_type: Only process items of these type tags
            exclude_type: Skip items of these type tags
            parallel: Run items on a bounded worker pool
            max_workers: Pool size (defaults to MAX_PARALLEL_WORKERS)
            dry_run: Report what would be applied without mutating anything

        Returns:
            ApplyReport with per-item outcomes

        Raises:
            CriticalOperationError: When a critical item fails; the partial
                report is attached as ``error.report``
        """
        items = self.select_items(include_type, exclude_type)
        report = ApplyReport(aggregate=self.name, dry_run=dry_run)
        logger.info(
            f"Applying {len(items)} item(s) in aggregate '{self.name}' "
            f"(force={force}, parallel={parallel}, dry_run={dry_run})"
        )

        def worker(item: ConfigurationItem) -> ItemOutcome:
            return self._apply_item(item, force, dry_run)

        for outcome in self._run(items, worker, parallel, max_workers, stop_on_critical=True):
            report.record(outcome)
            if outcome.critical and outcome.status in (ItemStatus.FAILED, ItemStatus.ERROR):
                report.aborted = True
                report.critical_error = outcome.error
                report.finished_at = datetime.now(timezone.utc)
                logger.error(
                    f"Critical failure on '{outcome.name}', aborting remaining items "
                    f"in aggregate '{self.name}'"
                )
                raise CriticalOperationError(outcome.name, outcome.error or "", report)

        report.finished_at = datetime.now(timezone.utc)
        logger.info(
            f"Apply complete for '{self.name}': {report.applied} applied, "
            f"{report.skipped} skipped, {report.failed} failed"
        )
        return report

    @staticmethod
    def _apply_item(item: ConfigurationItem, force: bool, dry_run: bool) -> ItemOutcome:
        started = time.perf_counter()
        try:
            if not force and item.test():
                return ItemOutcome(
                    name=item.name,
                    type=item.type,
                    status=ItemStatus.SKIPPED,
                    message="Already in desired state",
                    duration_ms=_elapsed_ms(started),
                )
            if dry_run:
                return ItemOutcome(
                    name=item.name,
                    type=item.type,
                    status=ItemStatus.WOULD_APPLY,
                    message="Would apply",
                    duration_ms=_elapsed_ms(started),
                )
            item.apply()
        except Exception as e:
            critical = item.critical or (isinstance(e, OperationFailure) and e.critical)
            logger.error(f"Apply of item '{item.name}' failed: {e}")
            return ItemOutcome(
                name=item.name,
                type=item.type,
                status=ItemStatus.FAILED,
                error=str(e),
                critical=critical,
                duration_ms=_elapsed_ms(started),
            )
        return ItemOutcome(
            name=item.name,
            type=item.type,
            status=ItemStatus.APPLIED,
            message="Applied",
            duration_ms=_elapsed_ms(started),
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _run(
        self,
        items: List[ConfigurationItem],
        worker: Callable[[ConfigurationItem], ItemOutcome],
        parallel: bool,
        max_workers: Optional[int],
        stop_on_critical: bool = False,
    ):
        """Yield one outcome per item, sequentially or on a worker pool."""
        if parallel and len(items) > 1:
            executor = self._start_executor(max_workers or MAX_PARALLEL_WORKERS)
            if executor is not None:
                yield from self._run_parallel(executor, items, worker, stop_on_critical)
                return
        for item in items:
            outcome = worker(item)
            yield outcome
            if stop_on_critical and outcome.critical:
                return

    def _start_executor(self, max_workers: int) -> Optional[Executor]:
        """Create the worker pool, or return None so the caller runs sequentially."""
        executor = None
        try:
            executor = self._executor_factory(max_workers=max(1, max_workers))
            # Worker threads start lazily; a no-op task surfaces start failures now
            executor.submit(_noop).result()
            return executor
        except (RuntimeError, OSError) as e:
            logger.warning(
                f"Worker pool failed to start for aggregate '{self.name}' ({e}), "
                f"falling back to sequential execution"
            )
            if executor is not None:
                executor.shutdown(wait=False)
            return None

    @staticmethod
    def _run_parallel(
        executor: Executor,
        items: List[ConfigurationItem],
        worker: Callable[[ConfigurationItem], ItemOutcome],
        stop_on_critical: bool,
    ):
        with executor:
            futures: Dict[Future, ConfigurationItem] = {executor.submit(worker, item): item for item in items}
            for future in as_completed(futures):
                outcome = future.result()
                if stop_on_critical and outcome.critical:
                    for pending in futures:
                        pending.cancel()
                yield outcome
                if stop_on_critical and outcome.critical:
                    return

    # ------------------------------------------------------------------
    # Reporting and serialization
    # ------------------------------------------------------------------

    def get_state_report(self, include_disabled: bool = False) -> Dict[str, Dict[str, Any]]:
        """Return ``get_current_state()`` for each item, keyed by item name."""
        return {
            item.name: item.get_current_state()
            for item in self.select_items(enabled_only=not include_disabled)
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "metadata": dict(self.metadata),
            "created": self.created.isoformat(),
            "last_modified": self.last_modified.isoformat(),
            "items": [item.to_dict() for item in self._items],
        }

    @classmethod
    def from_definitions(
        cls,
        name: str,
        definitions: Iterable[Dict[str, Any]],
        factory: "ItemFactory",
        metadata: Optional[Dict[str, Any]] = None,
        version: str = "1.0.0",
    ) -> "ConfigurationAggregate":
        """Build an aggregate from item definitions via ``factory``."""
        return cls(name, factory.create_many(definitions), metadata=metadata, version=version)

    @classmethod
    def load_file(cls, path: Path, factory: "ItemFactory") -> "ConfigurationAggregate":
        """Load an aggregate from a YAML or JSON configuration file.

        File format::

            name: workstation
            version: 1.0.0
            metadata: {owner: me}
            items:
              - {name: git, type: Package, properties: {PackageId: Git.Git}}

        Raises:
            ConfigValidationError: If the file cannot be parsed or has no items list
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                if path.suffix.lower() == ".json":
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigValidationError(f"Cannot read configuration file {path}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("items", []), list):
            raise ConfigValidationError(f"Configuration file {path} must contain an 'items' list")

        return cls.from_definitions(
            data.get("name") or path.stem,
            data.get("items", []),
            factory,
            metadata=data.get("metadata"),
            version=str(data.get("version", "1.0.0")),
        )


def _as_type_set(value: TypeFilter) -> Optional[set]:
    if value is None:
        return None
    if isinstance(value, str):
        return {value}
    return set(value)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


def _noop() -> None:
    return None
