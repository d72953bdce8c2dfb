"""Plugin registry - tracks all registered and loaded plugins."""
from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from converge.plugins.base import Plugin

logger = logging.getLogger(__name__)


class PluginRegistry:
    """Central registry for all plugins (thread-safe).

    Keeps two maps: every registered plugin regardless of load state, and the
    subset that is currently loaded. A loaded plugin is always registered.
    """

    def __init__(self):
        self._plugins: Dict[str, Plugin] = {}
        self._loaded: Dict[str, Plugin] = {}
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def register(self, plugin: Plugin) -> None:
        """Register a plugin; the caller enforces uniqueness."""
        with self._lock:
            if plugin.name in self._plugins:
                logger.warning(f"Plugin '{plugin.name}' already registered, overwriting")
            self._plugins[plugin.name] = plugin
        logger.info(f"Registered plugin: {plugin.name} ({plugin.source})")

    def mark_loaded(self, plugin: Plugin) -> None:
        with self._lock:
            if plugin.name not in self._plugins:
                raise KeyError(f"Plugin '{plugin.name}' must be registered before it is loaded")
            self._loaded[plugin.name] = plugin

    def mark_unloaded(self, name: str) -> Optional[Plugin]:
        with self._lock:
            return self._loaded.pop(name, None)

    def get(self, name: str) -> Optional[Plugin]:
        """Get a plugin by name."""
        with self._lock:
            return self._plugins.get(name)

    def get_all(self) -> List[Plugin]:
        """Get all registered plugins."""
        with self._lock:
            return list(self._plugins.values())

    def get_loaded(self) -> List[Plugin]:
        """Get all loaded plugins."""
        with self._lock:
            return list(self._loaded.values())

    def get_enabled(self) -> List[Plugin]:
        """Get all enabled plugins."""
        with self._lock:
            return [p for p in self._plugins.values() if p.enabled]

    def get_by_category(self, category: str) -> List[Plugin]:
        """Get loaded plugins of a category."""
        with self._lock:
            return [p for p in self._loaded.values() if p.category == category]

    def dependents_of(self, name: str, enabled_only: bool = True) -> List[Plugin]:
        """Get other registered plugins that list ``name`` as a direct dependency."""
        with self._lock:
            return [
                p for p in self._plugins.values()
                if p.name != name and name in p.dependencies and (p.enabled or not enabled_only)
            ]

    def remove(self, name: str) -> Optional[Plugin]:
        """Remove a plugin from both maps."""
        with self._lock:
            self._loaded.pop(name, None)
            return self._plugins.pop(name, None)

    def has(self, name: str) -> bool:
        """Check if a plugin is registered."""
        with self._lock:
            return name in self._plugins

    def is_loaded(self, name: str) -> bool:
        with self._lock:
            return name in self._loaded

    def count(self) -> int:
        """Get total number of registered plugins."""
        with self._lock:
            return len(self._plugins)
