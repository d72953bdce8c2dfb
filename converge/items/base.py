"""Configuration item abstract base class."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from converge.errors import ConfigValidationError, NotImplementedByVariantError

logger = logging.getLogger(__name__)


class ConfigurationItem(ABC):
    """A single declarative unit of desired system state.

    Variants implement ``test``, ``apply`` and ``_collect_state``. ``test`` must be
    side-effect free and return False (not raise) when the target is simply
    absent; ``apply`` must be safe to call again once the state is reached.

    Args:
        name: Stable item name (immutable)
        properties: Free-form, case-sensitive property map
        enabled: Disabled items are skipped by bulk operations
        description: Optional human-readable description
        critical: A failed apply of a critical item aborts the remaining batch
    """

    item_type: str = "ConfigurationItem"

    def __init__(
        self,
        name: str,
        properties: Optional[Dict[str, Any]] = None,
        enabled: bool = True,
        description: Optional[str] = None,
        critical: bool = False,
    ):
        if not name or not str(name).strip():
            raise ConfigValidationError("Configuration item name cannot be empty")
        self._name = str(name).strip()
        self._properties: Dict[str, Any] = dict(properties or {})
        self.enabled = enabled
        self.description = description
        self.critical = critical
        self.last_modified = datetime.now(timezone.utc)

    @property
    def name(self) -> str:
        return self._name

    @property
    def type(self) -> str:
        return self.item_type

    @property
    def properties(self) -> Dict[str, Any]:
        """Read-only view; use ``set_property`` to change a value."""
        return dict(self._properties)

    def get_property(self, key: str, default: Any = None) -> Any:
        return self._properties.get(key, default)

    def set_property(self, key: str, value: Any) -> None:
        self._properties[key] = value
        self.touch()

    def touch(self) -> None:
        self.last_modified = datetime.now(timezone.utc)

    @abstractmethod
    def test(self) -> bool:
        """Return True if the system already satisfies this item."""
        raise NotImplementedByVariantError(self.type, "test")

    @abstractmethod
    def apply(self) -> None:
        """Move the system toward the desired state."""
        raise NotImplementedByVariantError(self.type, "apply")

    @abstractmethod
    def _collect_state(self) -> Dict[str, Any]:
        """Return the technology-specific part of the current state."""
        raise NotImplementedByVariantError(self.type, "state")

    def get_current_state(self) -> Dict[str, Any]:
        """Return a diagnostic snapshot of this item.

        Operational failures are reported in an ``Error`` field instead of
        being raised. A missing implementation still raises.
        """
        state: Dict[str, Any] = {
            "Name": self.name,
            "Type": self.type,
            "Enabled": self.enabled,
        }
        try:
            state.update(self._collect_state())
        except NotImplementedByVariantError:
            raise
        except Exception as e:
            logger.warning(f"Failed to read state of item '{self.name}': {e}")
            state["Error"] = str(e)
        return state

    def to_definition(self) -> Dict[str, Any]:
        """Serialize to the definition format accepted by ``ItemFactory.create``."""
        return {
            "name": self.name,
            "type": self.type,
            "properties": self.properties,
            "enabled": self.enabled,
            "description": self.description,
            "critical": self.critical,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_definition()
        data["last_modified"] = self.last_modified.isoformat()
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, type={self.type!r}, enabled={self.enabled})"
