"""Configuration items, their aggregate container and the item factory."""

from .aggregate import ConfigurationAggregate
from .backends import FeatureBackend, InMemoryBackend, PackageBackend, RegistryBackend
from .base import ConfigurationItem
from .factory import ItemFactory
from .variants import FeatureItem, ItemHandler, PackageItem, PluginItem, RegistryItem

__all__ = [
    "ConfigurationAggregate",
    "ConfigurationItem",
    "FeatureBackend",
    "FeatureItem",
    "InMemoryBackend",
    "ItemFactory",
    "ItemHandler",
    "PackageBackend",
    "PackageItem",
    "PluginItem",
    "RegistryBackend",
    "RegistryItem",
]
