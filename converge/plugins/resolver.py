"""Dependency resolution over the plugin dependency graph."""

from typing import Callable, Dict, Iterable, List, Optional, Set

from converge.errors import DependencyCycleError, DependencyUnsatisfiedError
from converge.plugins.base import Plugin

PluginLookup = Callable[[str], Optional[Plugin]]


def resolve_order(name: str, lookup: PluginLookup) -> List[str]:
    """Return ``name``'s dependency closure in dependency order.

    Every plugin appears after all of its dependencies; ``name`` comes last.

    Args:
        name: Plugin whose closure is resolved
        lookup: Returns the registered plugin for a name, or None

    Raises:
        DependencyUnsatisfiedError: If a plugin in the closure is not registered
        DependencyCycleError: If the closure contains a cycle
    """
    order: List[str] = []
    done: Set[str] = set()
    missing: List[str] = []

    def visit(current: str, path: List[str]) -> None:
        if current in done:
            return
        if current in path:
            cycle = path[path.index(current):] + [current]
            raise DependencyCycleError(name, cycle)
        plugin = lookup(current)
        if plugin is None:
            if current not in missing:
                missing.append(current)
            return
        path.append(current)
        for dependency in plugin.dependencies:
            visit(dependency, path)
        path.pop()
        done.add(current)
        order.append(current)

    visit(name, [])
    if missing:
        raise DependencyUnsatisfiedError(name, missing)
    return order


def resolve_dependents(name: str, plugins: Iterable[Plugin], enabled_only: bool = False) -> List[str]:
    """Return every plugin that transitively depends on ``name``.

    The order is safe for disabling: a plugin appears before anything it
    depends on, so dependents are handled first.
    """
    by_name: Dict[str, Plugin] = {p.name: p for p in plugins}
    reverse: Dict[str, List[str]] = {}
    for plugin in by_name.values():
        if enabled_only and not plugin.enabled:
            continue
        for dependency in plugin.dependencies:
            reverse.setdefault(dependency, []).append(plugin.name)

    found: List[str] = []
    seen: Set[str] = {name}
    stack = list(reverse.get(name, []))
    while stack:
        current = stack.pop(0)
        if current in seen:
            continue
        seen.add(current)
        found.append(current)
        stack.extend(reverse.get(current, []))

    # Order dependents-first: a plugin must precede the plugins it depends on
    closure = set(found)
    ordered: List[str] = []
    placed: Set[str] = set()

    def place(current: str, visiting: Set[str]) -> None:
        if current in placed or current in visiting:
            return
        visiting.add(current)
        for dependent in reverse.get(current, []):
            if dependent in closure:
                place(dependent, visiting)
        visiting.discard(current)
        placed.add(current)
        ordered.append(current)

    for current in found:
        place(current, set())
    return ordered


def find_cycles(plugins: Iterable[Plugin]) -> List[List[str]]:
    """Return every dependency cycle among ``plugins`` (for diagnostics)."""
    by_name: Dict[str, Plugin] = {p.name: p for p in plugins}
    cycles: List[List[str]] = []
    seen_cycles: Set[frozenset] = set()
    finished: Set[str] = set()

    def visit(current: str, path: List[str]) -> None:
        if current in path:
            cycle = path[path.index(current):] + [current]
            key = frozenset(cycle)
            if key not in seen_cycles:
                seen_cycles.add(key)
                cycles.append(cycle)
            return
        if current in finished or current not in by_name:
            return
        path.append(current)
        for dependency in by_name[current].dependencies:
            visit(dependency, path)
        path.pop()
        finished.add(current)

    for plugin_name in by_name:
        visit(plugin_name, [])
    return cycles
