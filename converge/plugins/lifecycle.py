"""Plugin lifecycle management - instantiation, initialization and cleanup."""
from __future__ import annotations

import importlib.util
import logging
import sys
from datetime import datetime, timezone
from typing import List

from converge.plugins.base import Plugin
from converge.plugins.discovery import DiscoveredPlugin

logger = logging.getLogger(__name__)


class PluginLifecycle:
    """Manages plugin transitions: discovered -> instantiated -> initialized -> cleaned up."""

    def instantiate(self, discovered: DiscoveredPlugin) -> Plugin:
        """Import the plugin's entry module and call its entry function.

        The entry function receives the manifest and must return a ``Plugin``.

        Args:
            discovered: Plugin found by discovery

        Returns:
            The plugin object

        Raises:
            ImportError: If the entry module cannot be loaded
            AttributeError: If the entry function does not exist
            TypeError: If the entry function is not callable or returns a non-Plugin
        """
        manifest = discovered.manifest
        module_name, func_name = manifest.entry_point.split(":", 1)

        # Add plugin directory to sys.path temporarily for sibling imports
        plugin_dir = str(discovered.path)
        added = plugin_dir not in sys.path
        if added:
            sys.path.insert(0, plugin_dir)

        try:
            spec = importlib.util.spec_from_file_location(
                f"converge_plugin_{manifest.name.replace('-', '_')}_{module_name}",
                discovered.path / f"{module_name}.py",
            )
            if spec is None or spec.loader is None:
                raise ImportError(f"Cannot find module {module_name}.py in {discovered.path}")

            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
        finally:
            if added and plugin_dir in sys.path:
                sys.path.remove(plugin_dir)

        register_func = getattr(module, func_name, None)
        if register_func is None:
            raise AttributeError(f"Module {module_name} has no function '{func_name}'")
        if not callable(register_func):
            raise TypeError(f"{module_name}.{func_name} is not callable")

        plugin = register_func(manifest)
        if not isinstance(plugin, Plugin):
            raise TypeError(
                f"{module_name}.{func_name} returned {type(plugin).__name__}, expected a Plugin"
            )
        plugin.path = discovered.path
        plugin.source = discovered.source
        logger.info(f"Instantiated plugin: {plugin.name} from {discovered.path}")
        return plugin

    def initialize(self, plugin: Plugin) -> None:
        """Call the plugin's initialize() hook and stamp ``loaded_at``.

        Exceptions propagate to the caller; the plugin stays unloaded.
        """
        try:
            plugin.initialize()
        except Exception as e:
            plugin.error = str(e)
            plugin.loaded_at = None
            logger.error(f"Failed to initialize plugin {plugin.name}: {e}")
            raise
        plugin.error = None
        plugin.loaded_at = datetime.now(timezone.utc)
        logger.info(f"Initialized plugin: {plugin.name}")

    def cleanup(self, plugin: Plugin) -> List[str]:
        """Call the plugin's cleanup() hook, best-effort.

        Returns:
            Warnings collected while cleaning up (empty on success)
        """
        warnings = []
        try:
            plugin.cleanup()
        except Exception as e:
            warnings.append(f"Cleanup of plugin '{plugin.name}' failed: {e}")
            logger.warning(f"Failed to clean up plugin {plugin.name}: {e}")
        plugin.loaded_at = None
        logger.info(f"Cleaned up plugin: {plugin.name}")
        return warnings
