"""Configuration bridge - layered topic resolution with caching (thread-safe)."""

import copy
import json
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml

from converge.constants import CACHE_TTL_SECONDS
from converge.errors import ConfigValidationError
from converge.utils.deep_merge import deep_merge

logger = logging.getLogger(__name__)

SOURCE_SUFFIXES = (".yaml", ".yml", ".json")

# selector(merged_document, *params) -> resolved value
TopicSelector = Callable[..., Any]


@dataclass
class CacheEntry:
    """A resolved topic value and when it was stored."""

    value: Any
    timestamp: float
    key: str = ""

    def is_fresh(self, now: float, ttl: float) -> bool:
        return (now - self.timestamp) <= ttl


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def select_packages(document: Dict[str, Any], category: Optional[str] = None) -> Any:
    """Packages topic: the package list of one category, or the whole document.

    Document format::

        categories:
          Development:
            - {id: Git.Git, name: Git}
    """
    if category is None:
        return document
    categories = document.get("categories") or {}
    packages = categories.get(category, [])
    return packages if isinstance(packages, list) else []


def select_terminal(
    document: Dict[str, Any],
    theme: str = "Dark",
    include_fonts: Any = True,
    include_keybindings: Any = False,
    include_profiles: Any = True,
) -> Dict[str, Any]:
    """Terminal topic: base settings plus the chosen theme and optional sections."""
    themes = document.get("themes") or {}
    resolved: Dict[str, Any] = {
        "settings": document.get("settings", {}),
        "theme": themes.get(theme, {}),
    }
    if theme not in themes:
        logger.warning(f"Terminal theme '{theme}' not defined, available: {', '.join(themes) or 'none'}")
    if _as_bool(include_fonts):
        resolved["fonts"] = document.get("fonts", {})
    if _as_bool(include_keybindings):
        resolved["keybindings"] = document.get("keybindings", [])
    if _as_bool(include_profiles):
        resolved["profiles"] = document.get("profiles", [])
    return resolved


def select_profile(
    document: Dict[str, Any],
    shell: str = "PowerShell",
    include_aliases: Any = True,
) -> Dict[str, Any]:
    """Profile topic: ``common`` settings merged with the shell-specific section."""
    shells = document.get("shells") or {}
    resolved = deep_merge(document.get("common") or {}, shells.get(shell) or {})
    if not _as_bool(include_aliases):
        resolved.pop("aliases", None)
    resolved["shell"] = shell
    return resolved


DEFAULT_TOPICS: Dict[str, TopicSelector] = {
    "Packages": select_packages,
    "Terminal": select_terminal,
    "Profile": select_profile,
}

# Top-level document type each built-in selector reads
DEFAULT_DOCUMENT_TYPES: Dict[str, type] = {
    "Packages": dict,
    "Terminal": dict,
    "Profile": dict,
}

CacheKey = Tuple[str, Tuple[Tuple[str, str], ...]]


class ConfigurationBridge:
    """Resolves named configuration topics (Thread-safe).

    A topic's value is the module-level (built-in) definition with the
    user-level definition deep-merged over it, narrowed by the topic's
    selector. Resolved values are cached per topic and parameter set for
    ``cache_ttl`` seconds.

    Args:
        module_root: Directory holding built-in ``<Topic>.yaml|.yml|.json`` files
        user_root: Directory holding user overrides with the same names
        cache_ttl: Cache entry lifetime in seconds
        caching_enabled: Initial caching state
        clock: Time source in seconds (injectable for tests)
    """

    def __init__(
        self,
        module_root: Path,
        user_root: Optional[Path] = None,
        cache_ttl: float = CACHE_TTL_SECONDS,
        caching_enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        if cache_ttl < 0:
            raise ConfigValidationError(f"Cache TTL must be >= 0, got {cache_ttl}")
        self.module_root = Path(module_root)
        self.user_root = Path(user_root) if user_root else None
        self.cache_ttl = cache_ttl
        self._caching_enabled = caching_enabled
        self._clock = clock
        self._cache: Dict[CacheKey, CacheEntry] = {}
        self._last_update: Optional[datetime] = None
        self._topics: Dict[str, TopicSelector] = dict(DEFAULT_TOPICS)
        self._document_types: Dict[str, type] = dict(DEFAULT_DOCUMENT_TYPES)
        self._lock = threading.RLock()  # Thread safety

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------

    def register_topic(
        self,
        topic: str,
        selector: Optional[TopicSelector] = None,
        document_type: Optional[type] = None,
    ) -> None:
        """Register (or replace) the selector applied to a topic's merged document.

        Args:
            topic: Topic name
            selector: ``selector(document, *params)``; defaults to returning the document
            document_type: Required top-level type of each source (e.g. ``dict``);
                sources of another type are ignored like unreadable ones
        """
        if not topic or not topic.strip():
            raise ConfigValidationError("Topic name cannot be empty")
        with self._lock:
            self._topics[topic] = selector or (lambda document, *params: document)
            if document_type is None:
                self._document_types.pop(topic, None)
            else:
                self._document_types[topic] = document_type
            self._invalidate_locked(topic)

    def topics(self) -> List[str]:
        with self._lock:
            return sorted(self._topics)

    @staticmethod
    def cache_key(topic: str, *params: Any) -> str:
        """Build the display form of a cache key, e.g. ``Terminal_Dark_True_False_True``.

        Underscores inside parameters are escaped so distinct parameter
        lists never share a display key.
        """
        return "_".join([topic, *(str(param).replace("_", "\\_") for param in params)])

    @staticmethod
    def _entry_key(topic: str, params: Tuple[Any, ...]) -> CacheKey:
        return topic, tuple((type(param).__name__, str(param)) for param in params)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, topic: str, *params: Any) -> Any:
        """Resolve a topic.

        Args:
            topic: Topic name, e.g. "Packages"
            *params: Parameters passed to the topic's selector, e.g. "Development"

        Returns:
            The merged and selected value. Within the TTL, repeated calls with
            the same parameters return the identical cached object.
        """
        if not topic or not topic.strip():
            raise ConfigValidationError("Topic name cannot be empty")
        key = self._entry_key(topic, params)
        display_key = self.cache_key(topic, *params)

        with self._lock:
            if self._caching_enabled:
                entry = self._cache.get(key)
                if entry is not None:
                    if entry.is_fresh(self._clock(), self.cache_ttl):
                        logger.debug(f"Cache hit: {display_key}")
                        return entry.value
                    logger.debug(f"Cache entry expired: {display_key}")
                    del self._cache[key]

            value = self._resolve_uncached(topic, *params)

            if self._caching_enabled:
                self._cache[key] = CacheEntry(value=value, timestamp=self._clock(), key=display_key)
                self._last_update = datetime.now(timezone.utc)
            return value

    def _resolve_uncached(self, topic: str, *params: Any) -> Any:
        document_type = self._document_types.get(topic)
        module_path = self.module_source_path(topic)
        base = _check_shape(self._load_source(module_path, "module"), document_type, module_path, "module")
        merged = base
        user_path = self.user_source_path(topic)
        if user_path is not None:
            override = _check_shape(self._load_source(user_path, "user"), document_type, user_path, "user")
            if override is not None and base is not None and type(override) is not type(base):
                logger.warning(
                    f"Ignoring user-level source {user_path}: expected {type(base).__name__}, "
                    f"got {type(override).__name__}"
                )
                override = None
            if override is not None:
                merged = deep_merge(base if base is not None else {}, override)
                logger.info(f"Applied user override for topic '{topic}' from {user_path}")
        if merged is None:
            merged = {}

        selector = self._topics.get(topic)
        if selector is None:
            return merged
        try:
            return selector(merged, *params)
        except TypeError as e:
            raise ConfigValidationError(f"Invalid parameters for topic '{topic}': {e}") from e

    def module_source_path(self, topic: str) -> Optional[Path]:
        return _find_source(self.module_root, topic)

    def user_source_path(self, topic: str) -> Optional[Path]:
        if self.user_root is None:
            return None
        return _find_source(self.user_root, topic)

    def _load_source(self, path: Optional[Path], layer: str) -> Any:
        """Load one source file; missing or malformed sources count as empty."""
        if path is None:
            logger.debug(f"No {layer}-level source found")
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                if path.suffix.lower() == ".json":
                    return json.load(f)
                return yaml.safe_load(f)
        except (OSError, ValueError, yaml.YAMLError) as e:
            # ValueError covers JSONDecodeError and UnicodeDecodeError
            logger.warning(f"Ignoring unreadable {layer}-level source {path}: {e}")
            return None

    # ------------------------------------------------------------------
    # Convenience accessors
    # ------------------------------------------------------------------

    def get_packages(self, category: Optional[str] = None) -> Any:
        if category is None:
            return self.resolve("Packages")
        return self.resolve("Packages", category)

    def get_terminal_settings(
        self,
        theme: str = "Dark",
        include_fonts: bool = True,
        include_keybindings: bool = False,
        include_profiles: bool = True,
    ) -> Dict[str, Any]:
        return self.resolve("Terminal", theme, include_fonts, include_keybindings, include_profiles)

    def get_profile_settings(self, shell: str = "PowerShell", include_aliases: bool = True) -> Dict[str, Any]:
        return self.resolve("Profile", shell, include_aliases)

    # ------------------------------------------------------------------
    # User overrides
    # ------------------------------------------------------------------

    def save_user_override(self, topic: str, data: Any) -> Path:
        """Write a user-level override for ``topic`` and drop its cache entries."""
        if self.user_root is None:
            raise ConfigValidationError("No user configuration root configured")
        self.user_root.mkdir(parents=True, exist_ok=True)
        path = self.user_root / f"{topic}.yaml"
        with self._lock:
            existing = _find_source(self.user_root, topic)
            if existing is not None and existing != path:
                logger.warning(f"User override {existing} shadows {path}; removing it")
                existing.unlink()
            with open(path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
            self._invalidate_locked(topic)
        logger.info(f"Saved user override for topic '{topic}' to {path}")
        return path

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    @property
    def caching_enabled(self) -> bool:
        with self._lock:
            return self._caching_enabled

    def set_caching(self, enabled: bool) -> None:
        """Enable or disable caching; disabling discards the cache."""
        with self._lock:
            self._caching_enabled = enabled
            if not enabled:
                self._cache.clear()
        logger.info(f"Configuration cache {'enabled' if enabled else 'disabled'}")

    def clear_cache(self) -> None:
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
        logger.info(f"Cleared configuration cache ({count} entries)")

    def invalidate(self, topic: str) -> int:
        """Drop every cache entry of ``topic``; return how many were dropped."""
        with self._lock:
            return self._invalidate_locked(topic)

    def _invalidate_locked(self, topic: str) -> int:
        keys = [key for key in self._cache if key[0] == topic]
        for key in keys:
            del self._cache[key]
        return len(keys)

    def get_cache_statistics(self) -> Dict[str, Any]:
        """Diagnostics: entry count, last update time and key list."""
        with self._lock:
            return {
                "enabled": self._caching_enabled,
                "ttl_seconds": self.cache_ttl,
                "entries": len(self._cache),
                "last_updated": self._last_update.isoformat() if self._last_update else None,
                "keys": sorted(entry.key for entry in self._cache.values()),
            }

    def snapshot(self, topic: str, *params: Any) -> Any:
        """Resolve and return a deep copy safe for the caller to mutate."""
        return copy.deepcopy(self.resolve(topic, *params))


def _find_source(root: Path, topic: str) -> Optional[Path]:
    for suffix in SOURCE_SUFFIXES:
        candidate = root / f"{topic}{suffix}"
        if candidate.is_file():
            return candidate
    return None


def _check_shape(document: Any, document_type: Optional[type], path: Optional[Path], layer: str) -> Any:
    """Treat a source whose top level is not a mapping or list (or not the topic's type) as empty."""
    if document is None:
        return None
    if document_type is not None:
        if isinstance(document, document_type):
            return document
        expected = document_type.__name__
    elif isinstance(document, (dict, list)):
        return document
    else:
        expected = "mapping or list"
    logger.warning(f"Ignoring {layer}-level source {path}: expected {expected}, got {type(document).__name__}")
    return None
