"""Plugin system for the convergence engine.

Imports are lazy so that lightweight components like PluginConfigService or
PluginDiscovery can be used without pulling in the item layer.
"""

__all__ = [
    "PluginManifest",
    "Plugin",
    "PluginCategory",
    "ConfigurationPlugin",
    "RecommendationPlugin",
    "PluginRegistry",
    "PluginDiscovery",
    "DiscoveredPlugin",
    "PluginLifecycle",
    "PluginManager",
    "PluginConfigService",
]


def __getattr__(name):
    if name == "PluginManifest":
        from converge.plugins.manifest import PluginManifest
        return PluginManifest
    if name in ("Plugin", "PluginCategory", "ConfigurationPlugin", "RecommendationPlugin"):
        from converge.plugins import base
        return getattr(base, name)
    if name == "PluginRegistry":
        from converge.plugins.registry import PluginRegistry
        return PluginRegistry
    if name in ("PluginDiscovery", "DiscoveredPlugin"):
        from converge.plugins import discovery
        return getattr(discovery, name)
    if name == "PluginLifecycle":
        from converge.plugins.lifecycle import PluginLifecycle
        return PluginLifecycle
    if name == "PluginManager":
        from converge.plugins.manager import PluginManager
        return PluginManager
    if name == "PluginConfigService":
        from converge.plugins.config import PluginConfigService
        return PluginConfigService
    raise AttributeError(f"module 'converge.plugins' has no attribute {name!r}")
