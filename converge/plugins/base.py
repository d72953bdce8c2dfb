"""Plugin base classes and related types."""

import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from converge.items.variants import ITEM_OPERATIONS, ItemHandler
from converge.plugins.manifest import PluginManifest

# Rule signature: rule(profile) -> iterable of Recommendation or dicts
RecommendationRule = Callable[[Dict[str, Any]], Any]


class PluginCategory(str, Enum):
    """Built-in plugin categories; the manager's category set is extensible."""

    CONFIGURATION = "configuration"
    RECOMMENDATION = "recommendation"
    MONITORING = "monitoring"
    INTEGRATION = "integration"


class Plugin:
    """Base class for all plugins.

    Subclasses override ``initialize`` / ``cleanup`` for setup and teardown and
    extend ``capabilities`` to advertise what they provide.
    """

    def __init__(self, manifest: PluginManifest):
        self.manifest = manifest
        self.enabled: bool = manifest.enabled
        self.loaded_at: Optional[datetime] = None
        self.error: Optional[str] = None
        self.path: Optional[Path] = None
        self.source: str = "code"  # "code" | "bundled" | "installed" | "external"
        self.config: Dict[str, Any] = {}
        self._logger = logging.getLogger(f"plugin.{manifest.name}")

    @property
    def name(self) -> str:
        return self.manifest.name

    @property
    def version(self) -> str:
        return self.manifest.version

    @property
    def author(self) -> str:
        return self.manifest.author

    @property
    def category(self) -> str:
        return self.manifest.category

    @property
    def dependencies(self) -> List[str]:
        return list(self.manifest.dependencies)

    @property
    def supported_platforms(self) -> List[str]:
        return list(self.manifest.supported_platforms)

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.manifest.metadata

    @property
    def is_loaded(self) -> bool:
        return self.loaded_at is not None

    def initialize(self) -> None:
        """Called when the plugin is loaded. Override for initialization."""
        pass

    def cleanup(self) -> None:
        """Called when the plugin is unloaded. Override for cleanup."""
        pass

    def capabilities(self) -> Dict[str, Any]:
        """Describe what this plugin provides."""
        return {}

    def get_logger(self, name: Optional[str] = None) -> logging.Logger:
        """Get a logger for this plugin.

        Args:
            name: Optional sub-logger name (appended to plugin.{name})
        """
        if name:
            return logging.getLogger(f"plugin.{self.name}.{name}")
        return self._logger

    def to_dict(self) -> dict:
        """Serialize plugin to dict for listings and diagnostics."""
        return {
            "name": self.name,
            "version": self.version,
            "author": self.author,
            "description": self.manifest.description,
            "category": self.category,
            "dependencies": self.dependencies,
            "supported_platforms": self.supported_platforms,
            "source": self.source,
            "path": str(self.path) if self.path else None,
            "enabled": self.enabled,
            "loaded": self.is_loaded,
            "loaded_at": self.loaded_at.isoformat() if self.loaded_at else None,
            "error": self.error,
            "capabilities": self.capabilities(),
            "metadata": dict(self.metadata),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, version={self.version!r}, enabled={self.enabled})"


class ConfigurationPlugin(Plugin):
    """Plugin that serves new configuration item types through handlers."""

    def __init__(self, manifest: PluginManifest):
        super().__init__(manifest)
        self._handlers: Dict[str, ItemHandler] = {}

    def register_handler(
        self,
        type_tag: str,
        func: Callable,
        operations: Sequence[str] = ITEM_OPERATIONS,
    ) -> ItemHandler:
        """Register the processing function for an item type tag.

        Args:
            type_tag: Item type served, e.g. "ProfileLine"
            func: Callable ``func(item, operation)``
            operations: Operations supported by ``func``
        """
        handler = ItemHandler(func, operations)
        if type_tag in self._handlers:
            self._logger.warning(f"Handler for item type '{type_tag}' already registered, overwriting")
        self._handlers[type_tag] = handler
        self._logger.info(f"Registered handler for item type: {type_tag}")
        return handler

    def get_handler(self, type_tag: str) -> Optional[ItemHandler]:
        return self._handlers.get(type_tag)

    def handled_types(self) -> List[str]:
        return sorted(self._handlers)

    def capabilities(self) -> Dict[str, Any]:
        return {
            "item_types": {
                tag: list(handler.operations) for tag, handler in sorted(self._handlers.items())
            }
        }


class RecommendationPlugin(Plugin):
    """Plugin that contributes recommendation rules, grouped by category."""

    def __init__(self, manifest: PluginManifest):
        super().__init__(manifest)
        self._rules: Dict[str, Dict[str, RecommendationRule]] = {}

    def register_rule(self, category: str, name: str, rule: RecommendationRule) -> None:
        if not callable(rule):
            raise TypeError(f"Rule {name!r} is not callable")
        self._rules.setdefault(category, {})[name] = rule
        self._logger.info(f"Registered rule: {category}/{name}")

    def get_rules(self, category: Optional[str] = None) -> Dict[str, RecommendationRule]:
        if category is not None:
            return dict(self._rules.get(category, {}))
        merged: Dict[str, RecommendationRule] = {}
        for rules in self._rules.values():
            merged.update(rules)
        return merged

    def iter_rules(self) -> Iterator[Tuple[str, str, RecommendationRule]]:
        """Yield ``(category, name, rule)`` in registration order."""
        for category, rules in self._rules.items():
            for name, rule in rules.items():
                yield category, name, rule

    def rule_categories(self) -> List[str]:
        return list(self._rules)

    def capabilities(self) -> Dict[str, Any]:
        return {"rules": {category: sorted(rules) for category, rules in self._rules.items()}}
