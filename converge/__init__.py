"""Declarative workstation configuration convergence engine."""

__version__ = "1.0.0"

__all__ = [
    "ConfigurationAggregate",
    "ConfigurationBridge",
    "ItemFactory",
    "PluginManager",
    "RecommendationEngine",
]


def __getattr__(name):
    if name == "ConfigurationAggregate":
        from converge.items.aggregate import ConfigurationAggregate
        return ConfigurationAggregate
    if name == "ItemFactory":
        from converge.items.factory import ItemFactory
        return ItemFactory
    if name == "PluginManager":
        from converge.plugins.manager import PluginManager
        return PluginManager
    if name == "ConfigurationBridge":
        from converge.services.config_bridge import ConfigurationBridge
        return ConfigurationBridge
    if name == "RecommendationEngine":
        from converge.services.recommendation_service import RecommendationEngine
        return RecommendationEngine
    raise AttributeError(f"module 'converge' has no attribute {name!r}")
