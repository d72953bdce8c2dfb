"""Plugin discovery - scans directories to find plugins."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import ValidationError

from converge.plugins.manifest import PluginManifest

logger = logging.getLogger(__name__)


@dataclass
class DiscoveredPlugin:
    """A plugin found on disk but not yet registered."""

    manifest: PluginManifest
    path: Path
    source: str  # "bundled" | "installed" | "external"

    @property
    def name(self) -> str:
        return self.manifest.name

    @property
    def dependencies(self) -> List[str]:
        return list(self.manifest.dependencies)

    def to_dict(self) -> dict:
        return {
            "name": self.manifest.name,
            "version": self.manifest.version,
            "category": self.manifest.category,
            "dependencies": list(self.manifest.dependencies),
            "description": self.manifest.description,
            "source": self.source,
            "path": str(self.path),
            "entry_point": self.manifest.entry_point,
        }


class PluginDiscovery:
    """Discovers plugins by scanning directories for plugin.json manifests."""

    MANIFEST_FILE = "plugin.json"

    def __init__(self, search_paths: List[Tuple[Path, str]]):
        """Initialize discovery with search paths.

        Args:
            search_paths: List of (path, source_label) tuples, searched in order.
        """
        self.search_paths = list(search_paths)

    def add_search_path(self, path: Path, source: str = "external") -> None:
        if any(Path(existing) == Path(path) for existing, _ in self.search_paths):
            return
        self.search_paths.append((Path(path), source))

    def discover_all(self) -> List[DiscoveredPlugin]:
        """Discover all plugins from configured search paths.

        Returns:
            List of discovered plugins, first-found wins on duplicate names
        """
        discovered = []
        seen_names = set()

        for search_path, source in self.search_paths:
            search_path = Path(search_path)
            if not search_path.is_dir():
                logger.debug(f"Plugin search path does not exist: {search_path}")
                continue

            for plugin in self._scan_directory(search_path, source):
                if plugin.name in seen_names:
                    logger.warning(
                        f"Duplicate plugin name '{plugin.name}' found at {plugin.path}, "
                        f"skipping (first-found wins)"
                    )
                    continue
                seen_names.add(plugin.name)
                discovered.append(plugin)

        logger.info(f"Discovered {len(discovered)} plugin(s)")
        return discovered

    def discover_single(self, plugin_path: Path, source: str = "external") -> Optional[DiscoveredPlugin]:
        """Discover a single plugin from a specific path.

        Args:
            plugin_path: Path to the plugin directory
            source: Source label (e.g. "installed", "external")

        Returns:
            DiscoveredPlugin if valid, None otherwise
        """
        manifest_file = Path(plugin_path) / self.MANIFEST_FILE
        if not manifest_file.exists():
            logger.error(f"No {self.MANIFEST_FILE} found at {plugin_path}")
            return None
        return self._load_manifest(manifest_file, source)

    def _scan_directory(self, search_path: Path, source: str) -> List[DiscoveredPlugin]:
        """Scan a directory for plugin subdirectories."""
        plugins = []

        for item in sorted(search_path.iterdir()):
            if not item.is_dir():
                continue
            manifest_file = item / self.MANIFEST_FILE
            if not manifest_file.exists():
                continue

            discovered = self._load_manifest(manifest_file, source)
            if discovered:
                plugins.append(discovered)

        return plugins

    def _load_manifest(self, manifest_file: Path, source: str) -> Optional[DiscoveredPlugin]:
        """Load and validate a plugin manifest.

        Returns:
            DiscoveredPlugin if valid, None otherwise
        """
        try:
            with open(manifest_file, "r", encoding="utf-8") as f:
                data = json.load(f)

            manifest = PluginManifest(**data)
            plugin_dir = manifest_file.parent
            logger.debug(f"Discovered plugin: {manifest.name} at {plugin_dir}")
            return DiscoveredPlugin(manifest=manifest, path=plugin_dir, source=source)

        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in {manifest_file}: {e}")
        except ValidationError as e:
            logger.error(f"Invalid manifest in {manifest_file}: {e}")
        except (OSError, TypeError) as e:
            logger.error(f"Error loading {manifest_file}: {e}")

        return None
