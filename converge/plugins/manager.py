"""Plugin manager - registry and lifecycle controller for the plugin system."""

import logging
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

from converge.errors import DependencyCycleError, DependencyUnsatisfiedError, PluginValidationError
from converge.items.variants import ItemHandler
from converge.models.results import ErrorKind, OperationResult
from converge.plugins.base import (
    ConfigurationPlugin,
    Plugin,
    PluginCategory,
    RecommendationPlugin,
    RecommendationRule,
)
from converge.plugins.config import PluginConfigService
from converge.plugins.discovery import DiscoveredPlugin, PluginDiscovery
from converge.plugins.lifecycle import PluginLifecycle
from converge.plugins.registry import PluginRegistry
from converge.plugins.resolver import find_cycles, resolve_dependents, resolve_order

logger = logging.getLogger(__name__)

PathSpec = Union[Path, str, Tuple[Union[Path, str], str]]


class PluginManager:
    """Top-level plugin system orchestrator.

    Owns the registry of known plugins and the loaded subset, resolves
    dependencies, and coordinates discovery and the initialize/cleanup
    lifecycle. One instance per process (see ``converge.dependencies``).

    Args:
        plugin_paths: Search locations for discovery; bare paths are labelled "external"
        auto_load_enabled: Load plugins as soon as they are registered
        config_service: Persists enablement and supplies per-plugin settings
    """

    def __init__(
        self,
        plugin_paths: Optional[Iterable[PathSpec]] = None,
        auto_load_enabled: bool = True,
        config_service: Optional[PluginConfigService] = None,
    ):
        self.registry = PluginRegistry()
        self.lifecycle = PluginLifecycle()
        self.config_service = config_service
        self.auto_load_enabled = auto_load_enabled
        self.discovery = PluginDiscovery([_normalize_path(p) for p in plugin_paths or []])
        self._discovered: Dict[str, DiscoveredPlugin] = {}
        self._categories = {category.value for category in PluginCategory}
        self._lock = self.registry.lock

    # ------------------------------------------------------------------
    # Properties and configuration
    # ------------------------------------------------------------------

    @property
    def plugin_paths(self) -> List[Tuple[Path, str]]:
        return list(self.discovery.search_paths)

    @property
    def categories(self) -> List[str]:
        return sorted(self._categories)

    def register_category(self, category: str) -> None:
        """Extend the set of known plugin categories."""
        if not category or not category.strip():
            raise PluginValidationError(category, ["Category name cannot be empty"])
        self._categories.add(category.strip())

    def add_plugin_path(self, path: Union[Path, str], source: str = "external") -> None:
        self.discovery.add_search_path(Path(path), source)

    def validate_plugin(self, plugin: Plugin) -> List[str]:
        """Return validation problems for ``plugin`` (empty if valid)."""
        return plugin.manifest.validate_manifest(self._categories)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_plugin(self, plugin: Plugin, force: bool = False) -> OperationResult:
        """Register a plugin.

        Args:
            plugin: Plugin to register
            force: Register despite validation problems (uniqueness and
                   dependencies are still enforced)

        Returns:
            OperationResult; failures are ``conflict`` or ``dependency_unsatisfied``

        Raises:
            PluginValidationError: If the plugin is invalid and ``force`` is False
        """
        if not isinstance(plugin, Plugin):
            raise PluginValidationError(str(plugin), ["Object is not a Plugin"])

        warnings: List[str] = []
        problems = self.validate_plugin(plugin)
        if problems:
            if not force:
                raise PluginValidationError(plugin.name, problems)
            warnings.extend(f"Validation bypassed: {problem}" for problem in problems)
            logger.warning(f"Force-registering plugin '{plugin.name}' despite: {'; '.join(problems)}")

        with self._lock:
            if self.registry.has(plugin.name):
                return OperationResult.fail(
                    plugin.name,
                    ErrorKind.CONFLICT,
                    f"Plugin '{plugin.name}' is already registered",
                    warnings=warnings,
                )

            unsatisfied = self._unsatisfied_dependencies(plugin)
            if unsatisfied:
                logger.error(
                    f"Cannot register plugin '{plugin.name}': dependencies not satisfied "
                    f"({', '.join(unsatisfied)})"
                )
                return OperationResult.fail(
                    plugin.name,
                    ErrorKind.DEPENDENCY_UNSATISFIED,
                    f"Dependencies not satisfied: {', '.join(unsatisfied)}",
                    warnings=warnings,
                    details={"missing": unsatisfied},
                )

            self.registry.register(plugin)
            result = OperationResult.ok(plugin.name, f"Plugin '{plugin.name}' registered", warnings=warnings)

            if self.auto_load_enabled and plugin.enabled:
                load_result = self.load_plugin(plugin.name)
                result.details["loaded"] = load_result.success
                result.warnings.extend(load_result.warnings)
                if not load_result.success:
                    result.warnings.append(f"Auto-load failed: {load_result.error}")
            return result

    def unregister_plugin(self, name: str, force: bool = False) -> OperationResult:
        """Remove a plugin from the registry, unloading it first if needed.

        Fails when other enabled plugins depend on it, unless ``force``.
        """
        with self._lock:
            plugin = self.registry.get(name)
            if plugin is None:
                return _not_found(name)

            warnings: List[str] = []
            dependents = [p.name for p in self.registry.dependents_of(name)]
            if dependents:
                if not force:
                    return OperationResult.fail(
                        name,
                        ErrorKind.DEPENDENCY_UNSATISFIED,
                        f"Other plugins depend on this plugin: {', '.join(dependents)}",
                        details={"dependents": dependents},
                    )
                warnings.append(f"Forced removal; dependents left unsatisfied: {', '.join(dependents)}")
                logger.warning(f"Force-unregistering '{name}' with dependents: {', '.join(dependents)}")

            if self.registry.is_loaded(name):
                warnings.extend(self._unload(plugin))

            self.registry.remove(name)
            logger.info(f"Unregistered plugin: {name}")
            return OperationResult.ok(name, f"Plugin '{name}' unregistered", warnings=warnings)

    # ------------------------------------------------------------------
    # Load / unload
    # ------------------------------------------------------------------

    def load_plugin(self, name: str) -> OperationResult:
        """Initialize a registered plugin, loading its dependencies first.

        Initialization failures are returned as ``operation_failure`` and leave
        the plugin unloaded.
        """
        with self._lock:
            plugin = self.registry.get(name)
            if plugin is None:
                return _not_found(name)
            if self.registry.is_loaded(name):
                return OperationResult.ok(name, f"Plugin '{name}' already loaded", warnings=["Plugin already loaded"])
            if not plugin.enabled:
                return OperationResult.fail(
                    name, ErrorKind.OPERATION_FAILURE, f"Plugin '{name}' is disabled"
                )

            unsatisfied = self._unsatisfied_dependencies(plugin)
            if unsatisfied:
                return OperationResult.fail(
                    name,
                    ErrorKind.DEPENDENCY_UNSATISFIED,
                    f"Dependencies not satisfied: {', '.join(unsatisfied)}",
                    details={"missing": unsatisfied},
                )

            try:
                order = resolve_order(name, self.registry.get)
            except DependencyUnsatisfiedError as e:
                return _dependency_failure(name, e)

            loaded: List[str] = []
            warnings: List[str] = []
            for current in order:
                if self.registry.is_loaded(current):
                    continue
                result = self._load_single(self.registry.get(current))
                if not result.success:
                    result.details["loaded"] = loaded
                    result.warnings = warnings + result.warnings
                    if current != name:
                        result.plugin = name
                        result.error = f"Dependency '{current}' failed to load: {result.error}"
                    return result
                loaded.append(current)
                warnings.extend(result.warnings)

            return OperationResult.ok(
                name, f"Plugin '{name}' loaded", warnings=warnings, details={"loaded": loaded}
            )

    def unload_plugin(self, name: str) -> OperationResult:
        """Clean up a loaded plugin; it stays registered."""
        with self._lock:
            plugin = self.registry.get(name)
            if plugin is None:
                return _not_found(name)
            if not self.registry.is_loaded(name):
                return OperationResult.ok(name, f"Plugin '{name}' is not loaded", warnings=["Plugin not loaded"])

            warnings = self._unload(plugin)
            loaded_dependents = [
                p.name for p in self.registry.dependents_of(name) if self.registry.is_loaded(p.name)
            ]
            if loaded_dependents:
                warnings.append(f"Loaded plugins depend on '{name}': {', '.join(loaded_dependents)}")
            return OperationResult.ok(name, f"Plugin '{name}' unloaded", warnings=warnings)

    def _load_single(self, plugin: Plugin) -> OperationResult:
        if not plugin.enabled:
            return OperationResult.fail(
                plugin.name, ErrorKind.OPERATION_FAILURE, f"Plugin '{plugin.name}' is disabled"
            )
        warnings: List[str] = []
        if self.config_service is not None:
            plugin.config, warnings = self.config_service.resolve_settings(
                plugin.name, plugin.manifest.settings
            )
        else:
            plugin.config = dict(plugin.manifest.settings)
        try:
            self.lifecycle.initialize(plugin)
        except Exception as e:
            return OperationResult.fail(
                plugin.name, ErrorKind.OPERATION_FAILURE, f"Initialization failed: {e}"
            )
        self.registry.mark_loaded(plugin)
        return OperationResult.ok(plugin.name, f"Plugin '{plugin.name}' loaded", warnings=warnings)

    def _unload(self, plugin: Plugin) -> List[str]:
        warnings = self.lifecycle.cleanup(plugin)
        self.registry.mark_unloaded(plugin.name)
        return warnings

    # ------------------------------------------------------------------
    # Enable / disable
    # ------------------------------------------------------------------

    def enable_plugin(self, name: str, enable_dependencies: bool = False) -> OperationResult:
        """Enable and load a plugin.

        Args:
            name: Plugin to enable
            enable_dependencies: Also enable and load the whole dependency
                closure, dependencies first

        Returns:
            OperationResult; ``dependency_cycle`` when the graph has a cycle,
            ``dependency_unsatisfied`` when a dependency is missing or disabled
            On failure every plugin this call enabled is disabled again and
            listed under ``details["rolled_back"]``.
        """
        with self._lock:
            plugin = self.registry.get(name)
            if plugin is None:
                return _not_found(name)

            try:
                order = resolve_order(name, self.registry.get)
            except DependencyUnsatisfiedError as e:
                return _dependency_failure(name, e)

            if not enable_dependencies:
                disabled = [dep for dep in plugin.dependencies if not self.registry.get(dep).enabled]
                if disabled:
                    return OperationResult.fail(
                        name,
                        ErrorKind.DEPENDENCY_UNSATISFIED,
                        f"Dependencies not enabled: {', '.join(disabled)}",
                        details={"missing": disabled},
                    )
                order = [name]

            enabled: List[str] = []
            for current in order:
                target = self.registry.get(current)
                if not target.enabled:
                    enabled.append(current)
                self._set_enabled(target, True)
                result = self.load_plugin(current)
                if not result.success:
                    # Undo everything this call enabled, dependents first
                    for undo in reversed(enabled):
                        result.warnings.extend(self._disable_single(self.registry.get(undo)))
                    logger.warning(f"Enabling '{name}' failed, rolled back: {', '.join(enabled) or 'nothing'}")
                    result.plugin = name
                    result.details["enabled"] = []
                    result.details["rolled_back"] = enabled
                    if current != name:
                        result.error = f"Dependency '{current}' could not be enabled: {result.error}"
                    return result

            logger.info(f"Enabled plugin: {name}")
            return OperationResult.ok(name, f"Plugin '{name}' enabled", details={"enabled": enabled})

    def disable_plugin(self, name: str, disable_dependents: bool = False) -> OperationResult:
        """Disable and unload a plugin.

        Args:
            name: Plugin to disable
            disable_dependents: First disable everything that transitively
                depends on ``name``; otherwise enabled dependents produce warnings
        """
        with self._lock:
            plugin = self.registry.get(name)
            if plugin is None:
                return _not_found(name)

            warnings: List[str] = []
            disabled: List[str] = []
            dependents = resolve_dependents(name, self.registry.get_all(), enabled_only=True)

            if dependents and disable_dependents:
                for dependent in dependents:
                    warnings.extend(self._disable_single(self.registry.get(dependent)))
                    disabled.append(dependent)
            elif dependents:
                warnings.append(f"Enabled plugins depend on '{name}': {', '.join(dependents)}")

            warnings.extend(self._disable_single(plugin))
            disabled.append(name)
            logger.info(f"Disabled plugin: {name}")
            return OperationResult.ok(
                name, f"Plugin '{name}' disabled", warnings=warnings, details={"disabled": disabled}
            )

    def _disable_single(self, plugin: Plugin) -> List[str]:
        warnings: List[str] = []
        if self.registry.is_loaded(plugin.name):
            warnings.extend(self._unload(plugin))
        self._set_enabled(plugin, False)
        return warnings

    def _set_enabled(self, plugin: Plugin, enabled: bool) -> None:
        plugin.enabled = enabled
        if self.config_service is not None:
            if enabled:
                self.config_service.enable(plugin.name)
            else:
                self.config_service.disable(plugin.name)

    def _unsatisfied_dependencies(self, plugin: Plugin) -> List[str]:
        unsatisfied = []
        for dependency in plugin.dependencies:
            registered = self.registry.get(dependency)
            if registered is None or not registered.enabled:
                unsatisfied.append(dependency)
        return unsatisfied

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover_plugins(self) -> List[DiscoveredPlugin]:
        """Scan the search paths and remember what was found.

        Discovered plugins are not registered; use ``register_discovered``.
        """
        discovered = self.discovery.discover_all()
        with self._lock:
            self._discovered = {d.name: d for d in discovered}
        return discovered

    def get_discovered(self) -> List[DiscoveredPlugin]:
        with self._lock:
            return list(self._discovered.values())

    def register_discovered(self, name: str, force: bool = False) -> OperationResult:
        """Instantiate a discovered plugin from its source and register it."""
        with self._lock:
            discovered = self._discovered.get(name)
            if discovered is None:
                return _not_found(name, "Plugin not discovered")
            if self.registry.has(name):
                return OperationResult.fail(
                    name, ErrorKind.CONFLICT, f"Plugin '{name}' is already registered"
                )
            try:
                plugin = self.lifecycle.instantiate(discovered)
            except Exception as e:
                logger.error(f"Failed to instantiate plugin {name}: {e}")
                return OperationResult.fail(
                    name, ErrorKind.OPERATION_FAILURE, f"Failed to instantiate plugin: {e}"
                )
            return self.register_plugin(plugin, force=force)

    def load_all(self, names: Optional[Iterable[str]] = None) -> Dict[str, OperationResult]:
        """Discover, register and load plugins in dependency order.

        Args:
            names: Plugins to activate; defaults to the config service's enabled
                   list, or every discovered plugin whose manifest is enabled

        Returns:
            Map of plugin name to its result; one failure does not stop the others
        """
        discovered = {d.name: d for d in self.discover_plugins()}
        if names is None:
            if self.config_service is not None:
                names = self.config_service.get_enabled_list()
            else:
                names = [n for n, d in discovered.items() if d.manifest.enabled]

        results: Dict[str, OperationResult] = {}
        for name in names:
            if name in results:
                continue
            try:
                order = resolve_order(name, lambda n: self.registry.get(n) or discovered.get(n))
            except DependencyUnsatisfiedError as e:
                results[name] = _dependency_failure(name, e)
                continue

            for current in order:
                if current in results:
                    continue
                results[current] = self._activate(current)

        loaded = len(self.registry.get_loaded())
        logger.info(f"Plugin system initialized, {loaded}/{self.registry.count()} plugins loaded")
        return results

    def _activate(self, name: str) -> OperationResult:
        warnings: List[str] = []
        if not self.registry.has(name):
            try:
                result = self.register_discovered(name)
            except PluginValidationError as e:
                return OperationResult.fail(name, ErrorKind.VALIDATION, str(e))
            if not result.success:
                return result
            warnings = result.warnings
        plugin = self.registry.get(name)
        # Registration auto-loads; keep its warnings instead of "already loaded"
        if self.registry.is_loaded(name):
            return OperationResult.ok(name, f"Plugin '{name}' loaded", warnings=warnings)
        if not plugin.enabled:
            self._set_enabled(plugin, True)
        result = self.load_plugin(name)
        result.warnings = warnings + result.warnings
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_plugin(self, name: str) -> Optional[Plugin]:
        return self.registry.get(name)

    def list_plugins(self) -> List[dict]:
        """List all registered plugins as dicts."""
        return [p.to_dict() for p in self.registry.get_all()]

    def get_plugin_info(self, name: str) -> Optional[dict]:
        """Get plugin information as dict."""
        plugin = self.registry.get(name)
        if plugin is None:
            return None
        info = plugin.to_dict()
        info["dependents"] = [p.name for p in self.registry.dependents_of(name, enabled_only=False)]
        if self.config_service is not None:
            info["config"] = self.config_service.get_plugin_config(name)
        return info

    def get_plugins_by_category(self, category: Union[str, PluginCategory]) -> List[Plugin]:
        """Return loaded plugins of ``category``."""
        category = category.value if isinstance(category, PluginCategory) else category
        return self.registry.get_by_category(category)

    def get_handler(self, type_tag: str) -> Optional[ItemHandler]:
        """Return the item handler for ``type_tag`` from a loaded configuration plugin."""
        for plugin in self.get_plugins_by_category(PluginCategory.CONFIGURATION):
            if isinstance(plugin, ConfigurationPlugin):
                handler = plugin.get_handler(type_tag)
                if handler is not None:
                    return handler
        return None

    def handled_item_types(self) -> List[str]:
        types = set()
        for plugin in self.get_plugins_by_category(PluginCategory.CONFIGURATION):
            if isinstance(plugin, ConfigurationPlugin):
                types.update(plugin.handled_types())
        return sorted(types)

    def iter_recommendation_rules(self) -> Iterator[Tuple[str, str, str, RecommendationRule]]:
        """Yield ``(plugin_name, category, rule_name, rule)`` from loaded recommendation plugins."""
        for plugin in self.get_plugins_by_category(PluginCategory.RECOMMENDATION):
            if isinstance(plugin, RecommendationPlugin):
                for category, rule_name, rule in plugin.iter_rules():
                    yield plugin.name, category, rule_name, rule

    def diagnose(self) -> List[str]:
        """Return problems found in the current registry (for ``doctor``)."""
        issues = []
        plugins = self.registry.get_all()
        for cycle in find_cycles(plugins):
            issues.append(f"Dependency cycle: {' -> '.join(cycle)}")
        for plugin in plugins:
            for problem in self.validate_plugin(plugin):
                issues.append(f"Plugin '{plugin.name}': {problem}")
            if plugin.enabled:
                unsatisfied = self._unsatisfied_dependencies(plugin)
                if unsatisfied:
                    issues.append(
                        f"Plugin '{plugin.name}': dependencies not satisfied ({', '.join(unsatisfied)})"
                    )
            if plugin.error:
                issues.append(f"Plugin '{plugin.name}': last error: {plugin.error}")
        return issues


def _normalize_path(spec: PathSpec) -> Tuple[Path, str]:
    if isinstance(spec, tuple):
        path, source = spec
        return Path(path), source
    return Path(spec), "external"


def _not_found(name: str, message: str = "Plugin not found") -> OperationResult:
    logger.error(f"{message}: {name}")
    return OperationResult.fail(name, ErrorKind.NOT_FOUND, f"{message}: {name}")


def _dependency_failure(name: str, error: DependencyUnsatisfiedError) -> OperationResult:
    if isinstance(error, DependencyCycleError):
        return OperationResult.fail(
            name, ErrorKind.DEPENDENCY_CYCLE, str(error), details={"cycle": error.cycle}
        )
    return OperationResult.fail(
        name, ErrorKind.DEPENDENCY_UNSATISFIED, str(error), details={"missing": error.dependencies}
    )
