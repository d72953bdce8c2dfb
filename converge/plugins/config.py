"""Plugin configuration service - persists plugin enablement and settings."""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class PluginConfigService:
    """Manages the plugins/config.json file under the user configuration root.

    Config format:
    {
        "enabled": ["shell-profile", "workstation-rules"],
        "plugins": {
            "workstation-rules": {
                "low_memory_gb": 8
            }
        }
    }

    Settings are checked against the defaults a plugin declares in the
    ``settings`` block of its manifest, see ``resolve_settings``.

    With ``config_file=None`` the configuration lives in memory only.
    """

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = Path(config_file) if config_file else None
        self._lock = threading.Lock()
        self._config: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        """Load config from file, using defaults if missing or invalid."""
        if self.config_file and self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    data.setdefault("enabled", [])
                    data.setdefault("plugins", {})
                    return data
                logger.error(f"Plugin config {self.config_file} is not a JSON object, ignoring")
            except (json.JSONDecodeError, OSError) as e:
                logger.error(f"Error loading plugin config: {e}")

        return {"enabled": [], "plugins": {}}

    def _save(self) -> None:
        """Save config to file (no-op for in-memory configs)."""
        if not self.config_file:
            return
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(self._config, f, indent=2, ensure_ascii=False)
        logger.debug(f"Saved plugin config to {self.config_file}")

    def is_enabled(self, name: str) -> bool:
        """Check if a plugin is enabled."""
        with self._lock:
            return name in self._config.get("enabled", [])

    def get_plugin_config(self, name: str) -> Dict[str, Any]:
        """Get configuration for a specific plugin."""
        with self._lock:
            return dict(self._config.get("plugins", {}).get(name, {}))

    def resolve_settings(self, name: str, defaults: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
        """Merge a plugin's stored settings over its declared defaults.

        Args:
            name: Plugin name
            defaults: Declared settings and their default values. When empty,
                      stored settings are passed through unchecked.

        Returns:
            Tuple of (settings, warnings). Unknown keys are dropped and values
            whose type does not match the default fall back to the default;
            each produces a warning.
        """
        stored = self.get_plugin_config(name)
        if not defaults:
            return stored, []

        settings = dict(defaults)
        warnings = []
        for key, value in stored.items():
            if key not in defaults:
                warnings.append(
                    f"Unknown setting '{key}' for plugin '{name}' ignored "
                    f"(known: {', '.join(sorted(defaults))})"
                )
                continue
            default = defaults[key]
            if not _matches_default(value, default):
                warnings.append(
                    f"Setting '{key}' for plugin '{name}' expects {type(default).__name__}, "
                    f"got {type(value).__name__}; using default {default!r}"
                )
                continue
            settings[key] = value

        for warning in warnings:
            logger.warning(warning)
        return settings, warnings

    def get_enabled_list(self) -> List[str]:
        """Get list of enabled plugin names."""
        with self._lock:
            return list(self._config.get("enabled", []))

    def enable(self, name: str) -> None:
        """Enable a plugin."""
        with self._lock:
            enabled = self._config.setdefault("enabled", [])
            if name in enabled:
                return
            enabled.append(name)
            self._save()
        logger.info(f"Enabled plugin: {name}")

    def disable(self, name: str) -> None:
        """Disable a plugin."""
        with self._lock:
            enabled = self._config.get("enabled", [])
            if name not in enabled:
                return
            enabled.remove(name)
            self._save()
        logger.info(f"Disabled plugin: {name}")

    def update_plugin_config(self, name: str, config: Dict[str, Any]) -> None:
        """Replace configuration for a specific plugin."""
        with self._lock:
            plugins = self._config.setdefault("plugins", {})
            plugins[name] = dict(config)
            self._save()
        logger.info(f"Updated config for plugin: {name}")

    def remove_plugin(self, name: str) -> None:
        """Forget a plugin's enablement and settings."""
        with self._lock:
            enabled = self._config.get("enabled", [])
            changed = name in enabled or name in self._config.get("plugins", {})
            if name in enabled:
                enabled.remove(name)
            self._config.get("plugins", {}).pop(name, None)
            if changed:
                self._save()

    def reload(self) -> None:
        """Reload config from disk."""
        with self._lock:
            self._config = self._load()


def _matches_default(value: Any, default: Any) -> bool:
    """Check a stored value against the declared default's type. Numbers mix freely, bools do not."""
    if default is None:
        return True
    if isinstance(default, bool) or isinstance(value, bool):
        return isinstance(default, bool) and isinstance(value, bool)
    if isinstance(default, (int, float)):
        return isinstance(value, (int, float))
    return isinstance(value, type(default))
