"""Dependency injection container for services."""

import logging
import os
from pathlib import Path

from converge.constants import (
    AUTO_LOAD_PLUGINS,
    BUNDLED_PLUGINS_DIR,
    INSTALLED_PLUGINS_DIR,
    MODULE_DEFINITIONS_DIR,
    PLUGIN_CONFIG_FILE,
    USER_DEFINITIONS_DIR,
)
from converge.items.factory import ItemFactory
from converge.plugins.config import PluginConfigService
from converge.plugins.manager import PluginManager
from converge.services.config_bridge import ConfigurationBridge
from converge.services.recommendation_service import RecommendationEngine

logger = logging.getLogger(__name__)

# ============================================================================
# Process-wide service instances (exposed via functions for easier testing/mocking)
# ============================================================================

_plugin_manager_instance = None
_config_bridge_instance = None
_item_factory_instance = None
_recommendation_engine_instance = None


def get_plugin_manager() -> PluginManager:
    """Get plugin manager (singleton).

    Search order: bundled plugins, installed plugins, then ``PLUGIN_PATHS``.
    Plugins are discovered here but only loaded by ``PluginManager.load_all()``.
    """
    global _plugin_manager_instance
    if _plugin_manager_instance is None:
        plugin_paths = [(BUNDLED_PLUGINS_DIR, "bundled"), (INSTALLED_PLUGINS_DIR, "installed")]

        # Parse extra plugin paths from environment
        plugin_paths_env = os.getenv("PLUGIN_PATHS", "")
        if plugin_paths_env:
            plugin_paths.extend(
                (Path(p.strip()), "external") for p in plugin_paths_env.split(os.pathsep) if p.strip()
            )

        _plugin_manager_instance = PluginManager(
            plugin_paths=plugin_paths,
            auto_load_enabled=AUTO_LOAD_PLUGINS,
            config_service=PluginConfigService(PLUGIN_CONFIG_FILE),
        )
        logger.info("Created PluginManager instance")
    return _plugin_manager_instance


def get_config_bridge() -> ConfigurationBridge:
    """Get configuration bridge (singleton)."""
    global _config_bridge_instance
    if _config_bridge_instance is None:
        _config_bridge_instance = ConfigurationBridge(MODULE_DEFINITIONS_DIR, USER_DEFINITIONS_DIR)
        logger.info("Created ConfigurationBridge instance")
    return _config_bridge_instance


def get_item_factory() -> ItemFactory:
    """Get item factory (singleton)."""
    global _item_factory_instance
    if _item_factory_instance is None:
        _item_factory_instance = ItemFactory(plugin_manager=get_plugin_manager())
        logger.info("Created ItemFactory instance")
    return _item_factory_instance


def get_recommendation_engine() -> RecommendationEngine:
    """Get recommendation engine (singleton)."""
    global _recommendation_engine_instance
    if _recommendation_engine_instance is None:
        _recommendation_engine_instance = RecommendationEngine(
            plugin_manager=get_plugin_manager(),
            factory=get_item_factory(),
        )
        logger.info("Created RecommendationEngine instance")
    return _recommendation_engine_instance


# Test utility function (for unit testing - resets all singletons)
def reset_services():
    """Reset all service instances (only for testing)."""
    global _plugin_manager_instance, _config_bridge_instance
    global _item_factory_instance, _recommendation_engine_instance

    _plugin_manager_instance = None
    _config_bridge_instance = None
    _item_factory_instance = None
    _recommendation_engine_instance = None
    logger.info("Reset all service instances")
