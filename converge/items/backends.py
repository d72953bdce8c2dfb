"""Backend protocols through which item variants reach the operating system.

The engine never talks to package managers, the registry or optional-feature
APIs directly. Each built-in item variant is handed a backend implementing the
matching protocol below; production backends live outside this package.
"""

import logging
import threading
from typing import Any, Dict, Optional, Protocol, Tuple, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class PackageBackend(Protocol):
    def is_installed(self, package_id: str, version: Optional[str] = None) -> bool: ...

    def installed_version(self, package_id: str) -> Optional[str]: ...

    def install(self, package_id: str, version: Optional[str] = None, source: Optional[str] = None) -> None: ...


@runtime_checkable
class RegistryBackend(Protocol):
    def read_value(self, path: str, value_name: str) -> Any: ...

    def write_value(self, path: str, value_name: str, value: Any, kind: str = "String") -> None: ...


@runtime_checkable
class FeatureBackend(Protocol):
    def feature_state(self, feature_name: str) -> Optional[str]: ...

    def set_feature_state(self, feature_name: str, state: str) -> None: ...


class InMemoryBackend:
    """Dict-backed implementation of every backend protocol.

    Used to simulate a machine (tests, dry runs, demos). Thread-safe so it can
    serve parallel aggregate workers.
    """

    def __init__(
        self,
        packages: Optional[Dict[str, str]] = None,
        registry: Optional[Dict[Tuple[str, str], Any]] = None,
        features: Optional[Dict[str, str]] = None,
    ):
        self.packages: Dict[str, str] = dict(packages or {})
        self.registry: Dict[Tuple[str, str], Any] = dict(registry or {})
        self.features: Dict[str, str] = dict(features or {})
        self._lock = threading.Lock()

    # Packages

    def is_installed(self, package_id: str, version: Optional[str] = None) -> bool:
        with self._lock:
            installed = self.packages.get(package_id)
        if installed is None:
            return False
        return version is None or installed == version

    def installed_version(self, package_id: str) -> Optional[str]:
        with self._lock:
            return self.packages.get(package_id)

    def install(self, package_id: str, version: Optional[str] = None, source: Optional[str] = None) -> None:
        with self._lock:
            self.packages[package_id] = version or "latest"
        logger.debug(f"Installed package {package_id} ({version or 'latest'}) from {source or 'default'}")

    # Registry

    def read_value(self, path: str, value_name: str) -> Any:
        with self._lock:
            return self.registry.get((path, value_name))

    def write_value(self, path: str, value_name: str, value: Any, kind: str = "String") -> None:
        with self._lock:
            self.registry[(path, value_name)] = value
        logger.debug(f"Wrote {kind} value {path}\\{value_name}={value!r}")

    # Optional features

    def feature_state(self, feature_name: str) -> Optional[str]:
        with self._lock:
            return self.features.get(feature_name)

    def set_feature_state(self, feature_name: str, state: str) -> None:
        with self._lock:
            self.features[feature_name] = state
        logger.debug(f"Set feature {feature_name} to {state}")
