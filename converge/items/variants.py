"""Built-in configuration item variants."""

import logging
from typing import Any, Callable, Dict, Optional, Sequence

from converge.errors import ConfigValidationError, NotImplementedByVariantError, OperationFailure
from converge.items.backends import FeatureBackend, PackageBackend, RegistryBackend
from converge.items.base import ConfigurationItem

logger = logging.getLogger(__name__)

FEATURE_STATES = ("Enabled", "Disabled")


class PackageItem(ConfigurationItem):
    """Ensures a package (optionally a specific version) is installed.

    Properties:
        PackageId: Package manager identifier (defaults to the item name)
        Version: Exact version to require, optional
        Source: Package source, e.g. "winget"
    """

    item_type = "Package"

    def __init__(self, name: str, backend: PackageBackend, **kwargs):
        super().__init__(name, **kwargs)
        self._backend = backend

    @property
    def package_id(self) -> str:
        return self.get_property("PackageId") or self.name

    @property
    def version(self) -> Optional[str]:
        return self.get_property("Version")

    def test(self) -> bool:
        return self._backend.is_installed(self.package_id, self.version)

    def apply(self) -> None:
        if self.test():
            logger.debug(f"Package {self.package_id} already installed")
            return
        logger.info(f"Installing package {self.package_id}")
        self._backend.install(self.package_id, self.version, self.get_property("Source"))
        self.touch()

    def _collect_state(self) -> Dict[str, Any]:
        installed = self._backend.installed_version(self.package_id)
        return {
            "PackageId": self.package_id,
            "Installed": installed is not None,
            "InstalledVersion": installed,
            "DesiredVersion": self.version,
        }

    @classmethod
    def from_definition(cls, definition: Dict[str, Any], backend: PackageBackend) -> "PackageItem":
        return cls(backend=backend, **_common_kwargs(definition))


class RegistryItem(ConfigurationItem):
    """Ensures a registry value holds the desired data.

    Properties:
        Path: Key path, e.g. ``HKCU:\\Software\\...``
        ValueName: Value name under the key
        Value: Desired data
        Kind: Value kind (String, DWord, ...)
    """

    item_type = "Registry"

    def __init__(self, name: str, backend: RegistryBackend, **kwargs):
        super().__init__(name, **kwargs)
        for key in ("Path", "ValueName"):
            if not self.get_property(key):
                raise ConfigValidationError(f"Registry item '{name}' requires property '{key}'")
        self._backend = backend

    def test(self) -> bool:
        current = self._backend.read_value(self.get_property("Path"), self.get_property("ValueName"))
        return current is not None and current == self.get_property("Value")

    def apply(self) -> None:
        if self.test():
            return
        self._backend.write_value(
            self.get_property("Path"),
            self.get_property("ValueName"),
            self.get_property("Value"),
            self.get_property("Kind", "String"),
        )
        self.touch()

    def _collect_state(self) -> Dict[str, Any]:
        return {
            "Path": self.get_property("Path"),
            "ValueName": self.get_property("ValueName"),
            "CurrentValue": self._backend.read_value(self.get_property("Path"), self.get_property("ValueName")),
            "DesiredValue": self.get_property("Value"),
        }

    @classmethod
    def from_definition(cls, definition: Dict[str, Any], backend: RegistryBackend) -> "RegistryItem":
        return cls(backend=backend, **_common_kwargs(definition))


class FeatureItem(ConfigurationItem):
    """Ensures an optional OS feature is enabled or disabled.

    Properties:
        FeatureName: Feature identifier (defaults to the item name)
        State: "Enabled" (default) or "Disabled"
    """

    item_type = "Feature"

    def __init__(self, name: str, backend: FeatureBackend, **kwargs):
        super().__init__(name, **kwargs)
        state = self.get_property("State", "Enabled")
        if state not in FEATURE_STATES:
            raise ConfigValidationError(
                f"Invalid feature state '{state}'. Allowed: {', '.join(FEATURE_STATES)}"
            )
        self._backend = backend

    @property
    def feature_name(self) -> str:
        return self.get_property("FeatureName") or self.name

    @property
    def desired_state(self) -> str:
        return self.get_property("State", "Enabled")

    def test(self) -> bool:
        return self._backend.feature_state(self.feature_name) == self.desired_state

    def apply(self) -> None:
        if self.test():
            return
        if self._backend.feature_state(self.feature_name) is None:
            raise OperationFailure(
                f"Feature '{self.feature_name}' is not available on this system",
                critical=self.critical,
            )
        self._backend.set_feature_state(self.feature_name, self.desired_state)
        self.touch()

    def _collect_state(self) -> Dict[str, Any]:
        return {
            "FeatureName": self.feature_name,
            "CurrentState": self._backend.feature_state(self.feature_name),
            "DesiredState": self.desired_state,
        }

    @classmethod
    def from_definition(cls, definition: Dict[str, Any], backend: FeatureBackend) -> "FeatureItem":
        return cls(backend=backend, **_common_kwargs(definition))


ITEM_OPERATIONS = ("test", "apply", "state")


class ItemHandler:
    """Processing function registered by a configuration plugin for one item type.

    Args:
        func: Callable ``func(item, operation)`` where operation is one of
              ``test``, ``apply``, ``state``
        operations: Operations the handler supports
    """

    def __init__(self, func: Callable[["PluginItem", str], Any], operations: Sequence[str] = ITEM_OPERATIONS):
        if not callable(func):
            raise TypeError(f"Item handler {func!r} is not callable")
        unknown = [op for op in operations if op not in ITEM_OPERATIONS]
        if unknown:
            raise ConfigValidationError(f"Unknown handler operations: {', '.join(unknown)}")
        self.func = func
        self.operations = tuple(operations)

    def supports(self, operation: str) -> bool:
        return operation in self.operations

    def __call__(self, item: "PluginItem", operation: str) -> Any:
        return self.func(item, operation)


class PluginItem(ConfigurationItem):
    """Item whose behaviour is supplied by a plugin handler.

    The handler's capabilities are checked at call time since plugin code is
    loaded dynamically.
    """

    def __init__(self, name: str, item_type: str, handler: ItemHandler, **kwargs):
        super().__init__(name, **kwargs)
        self._item_type = item_type
        self._handler = handler

    @property
    def type(self) -> str:
        return self._item_type

    def _dispatch(self, operation: str) -> Any:
        if not self._handler.supports(operation):
            raise NotImplementedByVariantError(self.type, operation)
        return self._handler(self, operation)

    def test(self) -> bool:
        return bool(self._dispatch("test"))

    def apply(self) -> None:
        if self._handler.supports("test") and self.test():
            return
        self._dispatch("apply")
        self.touch()

    def _collect_state(self) -> Dict[str, Any]:
        return dict(self._dispatch("state") or {})


def _common_kwargs(definition: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": definition.get("name", ""),
        "properties": definition.get("properties") or {},
        "enabled": definition.get("enabled", True),
        "description": definition.get("description"),
        "critical": definition.get("critical", False),
    }
