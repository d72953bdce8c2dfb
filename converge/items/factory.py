"""Item factory - turns item definitions into configuration item instances."""

import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Type

from converge.errors import ConfigValidationError, NotFoundError
from converge.items.backends import InMemoryBackend
from converge.items.base import ConfigurationItem
from converge.items.variants import FeatureItem, PackageItem, PluginItem, RegistryItem

if TYPE_CHECKING:
    from converge.plugins.manager import PluginManager
    from converge.services.config_bridge import ConfigurationBridge

logger = logging.getLogger(__name__)


class ItemFactory:
    """Creates configuration items from definitions.

    A definition is a mapping with ``name``, ``type`` and optional
    ``properties``, ``enabled``, ``description`` and ``critical`` keys. Built-in
    type tags map to item classes; any other tag is looked up among the
    handlers of loaded configuration plugins.

    Args:
        plugin_manager: Source of plugin-supplied item handlers
        backend: Backend handed to built-in variants (defaults to an in-memory one)
    """

    def __init__(self, plugin_manager: Optional["PluginManager"] = None, backend: Any = None):
        self.plugin_manager = plugin_manager
        self.backend = backend if backend is not None else InMemoryBackend()
        self._types: Dict[str, Type[ConfigurationItem]] = {
            PackageItem.item_type: PackageItem,
            RegistryItem.item_type: RegistryItem,
            FeatureItem.item_type: FeatureItem,
        }

    def register_type(self, type_tag: str, cls: Type[ConfigurationItem]) -> None:
        """Register a built-in item class under ``type_tag``.

        The class must provide ``from_definition(definition, backend)``.
        """
        if not (isinstance(cls, type) and issubclass(cls, ConfigurationItem)):
            raise TypeError(f"{cls!r} is not a ConfigurationItem subclass")
        if not hasattr(cls, "from_definition"):
            raise TypeError(f"{cls.__name__} has no from_definition() classmethod")
        if type_tag in self._types:
            logger.warning(f"Item type '{type_tag}' already registered, overwriting")
        self._types[type_tag] = cls

    def known_types(self) -> List[str]:
        """Built-in tags plus tags handled by loaded configuration plugins."""
        types = set(self._types)
        if self.plugin_manager is not None:
            types.update(self.plugin_manager.handled_item_types())
        return sorted(types)

    def create(self, definition: Mapping[str, Any]) -> ConfigurationItem:
        """Create one item.

        Raises:
            ConfigValidationError: If the definition lacks a name or type
            NotFoundError: If no class or plugin handler serves the type tag
        """
        if not isinstance(definition, Mapping):
            raise ConfigValidationError(f"Item definition must be a mapping, got {type(definition).__name__}")
        definition = dict(definition)
        type_tag = definition.get("type")
        if not type_tag:
            raise ConfigValidationError(f"Item definition '{definition.get('name')}' has no type")

        cls = self._types.get(type_tag)
        if cls is not None:
            return cls.from_definition(definition, self.backend)

        handler = self.plugin_manager.get_handler(type_tag) if self.plugin_manager else None
        if handler is None:
            raise NotFoundError("Item type", type_tag)

        return PluginItem(
            name=definition.get("name", ""),
            item_type=type_tag,
            handler=handler,
            properties=definition.get("properties") or {},
            enabled=definition.get("enabled", True),
            description=definition.get("description"),
            critical=definition.get("critical", False),
        )

    def create_many(self, definitions: Iterable[Mapping[str, Any]]) -> List[ConfigurationItem]:
        return [self.create(definition) for definition in definitions]

    def from_topic(
        self,
        bridge: "ConfigurationBridge",
        topic: str,
        *params: Any,
        item_type: str = PackageItem.item_type,
    ) -> List[ConfigurationItem]:
        """Materialize items from a bridge-resolved catalog list.

        Each catalog entry is a mapping; ``id`` (or ``name``) becomes the item
        name and the remaining keys become properties. Entries that already
        carry a ``type`` keep it.

        Example:
            Packages.yaml lists ``{id: Git.Git, name: Git}`` under
            ``categories.Development``; ``from_topic(bridge, "Packages",
            "Development")`` yields one ``PackageItem`` named ``Git.Git``.
        """
        resolved = bridge.resolve(topic, *params)
        if not isinstance(resolved, list):
            raise ConfigValidationError(f"Topic '{topic}' did not resolve to a list of entries")

        items = []
        for entry in resolved:
            if not isinstance(entry, Mapping):
                logger.warning(f"Skipping non-mapping entry in topic '{topic}': {entry!r}")
                continue
            entry = dict(entry)
            name = entry.pop("id", None) or entry.pop("name", None)
            if not name:
                logger.warning(f"Skipping entry without id in topic '{topic}': {entry!r}")
                continue
            properties = dict(entry.pop("properties", None) or {})
            properties.update({_property_name(k): v for k, v in entry.items() if k not in ("type", "enabled", "description", "critical")})
            if item_type == PackageItem.item_type:
                properties.setdefault("PackageId", name)
            items.append(self.create({
                "name": name,
                "type": entry.get("type", item_type),
                "properties": properties,
                "enabled": entry.get("enabled", True),
                "description": entry.get("description"),
                "critical": entry.get("critical", False),
            }))
        return items


def _property_name(key: str) -> str:
    # Catalog files use snake/lower case keys, item properties use PascalCase
    return "".join(part[:1].upper() + part[1:] for part in str(key).split("_"))
