"""Shared fixtures for the test suite."""

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from converge.items.backends import InMemoryBackend
from converge.items.base import ConfigurationItem
from converge.items.factory import ItemFactory
from converge.plugins.base import ConfigurationPlugin, Plugin, RecommendationPlugin
from converge.plugins.manager import PluginManager
from converge.plugins.manifest import PluginManifest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
BUNDLED_PLUGINS = PROJECT_ROOT / "plugins" / "bundled"


class StubItem(ConfigurationItem):
    """Item whose test/apply behaviour is scripted by the test."""

    item_type = "Stub"

    def __init__(self, name: str, passes: bool = False, error: Optional[Exception] = None,
                 apply_error: Optional[Exception] = None, **kwargs):
        super().__init__(name, **kwargs)
        self.passes = passes
        self.error = error
        self.apply_error = apply_error
        self.test_calls = 0
        self.apply_calls = 0

    def test(self) -> bool:
        self.test_calls += 1
        if self.error is not None:
            raise self.error
        return self.passes

    def apply(self) -> None:
        self.apply_calls += 1
        if self.apply_error is not None:
            raise self.apply_error
        self.passes = True

    def _collect_state(self) -> Dict[str, Any]:
        return {"Passes": self.passes}


class OtherStubItem(StubItem):
    item_type = "OtherStub"


def make_manifest(name: str, dependencies: Optional[List[str]] = None, **kwargs) -> PluginManifest:
    return PluginManifest(name=name, dependencies=dependencies or [], **kwargs)


def make_plugin(name: str, dependencies: Optional[List[str]] = None, cls=Plugin, **kwargs) -> Plugin:
    if cls is RecommendationPlugin:
        kwargs.setdefault("category", "recommendation")
    return cls(make_manifest(name, dependencies, **kwargs))


@pytest.fixture
def backend():
    return InMemoryBackend(
        packages={"Git.Git": "2.45.0"},
        registry={("HKCU:\\Software\\Test", "Theme"): "Dark"},
        features={"Microsoft-Windows-Subsystem-Linux": "Disabled"},
    )


@pytest.fixture
def factory(backend):
    return ItemFactory(backend=backend)


@pytest.fixture
def manager():
    return PluginManager()


@pytest.fixture
def config_plugin():
    """Configuration plugin serving an in-memory 'Flag' item type."""
    flags: Dict[str, bool] = {}

    class FlagPlugin(ConfigurationPlugin):
        def initialize(self):
            self.register_handler("Flag", self.handle)

        def handle(self, item, operation):
            if operation == "test":
                return flags.get(item.name, False)
            if operation == "apply":
                flags[item.name] = True
                return None
            return {"Set": flags.get(item.name, False)}

    plugin = FlagPlugin(make_manifest("flags"))
    plugin.flags = flags
    return plugin
