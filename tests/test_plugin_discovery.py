"""Tests for plugin discovery, lifecycle and the plugin config service."""

import json
import textwrap

import pytest

from converge.plugins.config import PluginConfigService
from converge.plugins.discovery import PluginDiscovery
from converge.plugins.lifecycle import PluginLifecycle
from converge.plugins.manager import PluginManager
from converge.models.results import ErrorKind


PLUGIN_SOURCE = textwrap.dedent('''
    from converge.plugins.base import Plugin

    class Greeter(Plugin):
        def initialize(self):
            self.greeting = self.config.get("greeting", "hello")


    def register(manifest):
        return Greeter(manifest)
''')


def write_plugin(root, dir_name, manifest, source=PLUGIN_SOURCE):
    plugin_dir = root / dir_name
    plugin_dir.mkdir(parents=True)
    (plugin_dir / "plugin.json").write_text(json.dumps(manifest), encoding="utf-8")
    if source is not None:
        (plugin_dir / "plugin.py").write_text(source, encoding="utf-8")
    return plugin_dir


class TestPluginDiscovery:
    """Tests for PluginDiscovery."""

    def test_discovers_plugins_in_order(self, tmp_path):
        write_plugin(tmp_path, "b-plugin", {"name": "beta"})
        write_plugin(tmp_path, "a-plugin", {"name": "alpha", "dependencies": ["beta"]})

        plugins = PluginDiscovery([(tmp_path, "installed")]).discover_all()

        assert [p.name for p in plugins] == ["alpha", "beta"]
        assert plugins[0].dependencies == ["beta"]
        assert plugins[0].source == "installed"

    def test_missing_search_path_is_skipped(self, tmp_path):
        assert PluginDiscovery([(tmp_path / "nowhere", "bundled")]).discover_all() == []

    def test_invalid_manifests_are_skipped(self, tmp_path, caplog):
        bad_json = tmp_path / "bad-json"
        bad_json.mkdir()
        (bad_json / "plugin.json").write_text("{not json", encoding="utf-8")
        write_plugin(tmp_path, "bad-type", {"name": "x", "dependencies": "not-a-list"})
        write_plugin(tmp_path, "good", {"name": "good"})

        plugins = PluginDiscovery([(tmp_path, "external")]).discover_all()

        assert [p.name for p in plugins] == ["good"]
        assert "Invalid JSON" in caplog.text
        assert "Invalid manifest" in caplog.text

    def test_first_found_wins(self, tmp_path):
        first = tmp_path / "first"
        second = tmp_path / "second"
        write_plugin(first, "p", {"name": "dup", "version": "1.0.0"})
        write_plugin(second, "p", {"name": "dup", "version": "2.0.0"})

        plugins = PluginDiscovery([(first, "bundled"), (second, "installed")]).discover_all()

        assert len(plugins) == 1
        assert plugins[0].manifest.version == "1.0.0"

    def test_discover_single(self, tmp_path):
        plugin_dir = write_plugin(tmp_path, "p", {"name": "single"})

        discovery = PluginDiscovery([])

        assert discovery.discover_single(plugin_dir).name == "single"
        assert discovery.discover_single(tmp_path / "missing") is None


class TestPluginLifecycle:
    """Tests for PluginLifecycle."""

    def test_instantiate_from_file(self, tmp_path):
        write_plugin(tmp_path, "greeter", {"name": "greeter"})
        discovered = PluginDiscovery([(tmp_path, "installed")]).discover_all()[0]

        plugin = PluginLifecycle().instantiate(discovered)

        assert plugin.name == "greeter"
        assert plugin.path == tmp_path / "greeter"
        assert plugin.source == "installed"

    def test_entry_point_must_return_plugin(self, tmp_path):
        write_plugin(tmp_path, "p", {"name": "p"}, source="def register(manifest):\n    return object()\n")
        discovered = PluginDiscovery([(tmp_path, "installed")]).discover_all()[0]

        with pytest.raises(TypeError):
            PluginLifecycle().instantiate(discovered)

    def test_missing_entry_function(self, tmp_path):
        write_plugin(
            tmp_path, "p", {"name": "p", "entry_point": "plugin:setup"},
            source="def register(manifest):\n    return None\n",
        )
        discovered = PluginDiscovery([(tmp_path, "installed")]).discover_all()[0]

        with pytest.raises(AttributeError):
            PluginLifecycle().instantiate(discovered)


class TestManagerDiscovery:
    """Tests for discovery through the PluginManager."""

    def test_register_discovered_applies_config(self, tmp_path):
        write_plugin(tmp_path / "plugins", "greeter", {"name": "greeter"})
        config = PluginConfigService(tmp_path / "config.json")
        config.update_plugin_config("greeter", {"greeting": "hi"})
        manager = PluginManager(plugin_paths=[tmp_path / "plugins"], config_service=config)

        manager.discover_plugins()
        result = manager.register_discovered("greeter")

        assert result.success
        assert manager.get_plugin("greeter").greeting == "hi"
        assert manager.get_plugin("greeter").source == "external"

    def test_declared_settings_without_config_service(self, tmp_path):
        write_plugin(tmp_path, "greeter", {"name": "greeter", "settings": {"greeting": "hey"}})
        manager = PluginManager(plugin_paths=[(tmp_path, "installed")])

        result = manager.load_all()

        assert result["greeter"].success
        assert manager.get_plugin("greeter").greeting == "hey"

    def test_load_plugin_surfaces_setting_warnings(self, tmp_path):
        write_plugin(tmp_path, "greeter", {"name": "greeter", "settings": {"greeting": "hey"}})
        config = PluginConfigService()
        config.update_plugin_config("greeter", {"greting": "hi"})
        manager = PluginManager(plugin_paths=[(tmp_path, "installed")], config_service=config)

        result = manager.load_all(["greeter"])["greeter"]

        assert result.success
        assert "Unknown setting 'greting'" in result.warnings[0]
        assert manager.get_plugin("greeter").greeting == "hey"

    def test_register_undiscovered(self, manager):
        assert manager.register_discovered("ghost").error_kind == ErrorKind.NOT_FOUND

    def test_load_all_uses_enabled_list_and_dependencies(self, tmp_path):
        root = tmp_path / "plugins"
        write_plugin(root, "base", {"name": "base"})
        write_plugin(root, "child", {"name": "child", "dependencies": ["base"]})
        write_plugin(root, "unused", {"name": "unused"})
        config = PluginConfigService(tmp_path / "config.json")
        config.enable("child")
        manager = PluginManager(plugin_paths=[(root, "installed")], config_service=config)

        results = manager.load_all()

        assert list(results) == ["base", "child"]
        assert all(r.success for r in results.values())
        assert not manager.registry.has("unused")

    def test_load_all_reports_broken_plugin(self, tmp_path):
        root = tmp_path / "plugins"
        write_plugin(root, "broken", {"name": "broken"}, source="raise ImportError('no deps')\n")
        write_plugin(root, "fine", {"name": "fine"})
        manager = PluginManager(plugin_paths=[(root, "installed")])

        results = manager.load_all()

        assert results["broken"].error_kind == ErrorKind.OPERATION_FAILURE
        assert results["fine"].success


class TestPluginConfigService:
    """Tests for PluginConfigService."""

    def test_defaults_when_missing(self, tmp_path):
        config = PluginConfigService(tmp_path / "missing.json")

        assert config.get_enabled_list() == []
        assert config.get_plugin_config("x") == {}

    def test_invalid_file_falls_back(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2", encoding="utf-8")

        assert PluginConfigService(path).get_enabled_list() == []

    def test_enable_disable_persist(self, tmp_path):
        path = tmp_path / "config.json"
        config = PluginConfigService(path)
        config.enable("a")
        config.enable("b")
        config.disable("a")

        reloaded = PluginConfigService(path)
        assert reloaded.get_enabled_list() == ["b"]
        assert reloaded.is_enabled("b")

    def test_remove_plugin(self, tmp_path):
        config = PluginConfigService(tmp_path / "config.json")
        config.enable("a")
        config.update_plugin_config("a", {"k": 1})

        config.remove_plugin("a")

        assert not config.is_enabled("a")
        assert config.get_plugin_config("a") == {}

    def test_in_memory(self):
        config = PluginConfigService()
        config.enable("a")

        assert config.is_enabled("a")

    def test_resolve_settings_merges_over_defaults(self):
        config = PluginConfigService()
        config.update_plugin_config("rules", {"threshold": 12.5})

        settings, warnings = config.resolve_settings("rules", {"threshold": 8, "verbose": False})

        assert settings == {"threshold": 12.5, "verbose": False}
        assert warnings == []

    @pytest.mark.parametrize("stored, expected_warning", [
        ({"treshold": 4}, "Unknown setting 'treshold'"),
        ({"threshold": "4"}, "expects int, got str"),
        ({"threshold": True}, "expects int, got bool"),
        ({"verbose": 1}, "expects bool, got int"),
    ])
    def test_resolve_settings_rejects_bad_values(self, stored, expected_warning, caplog):
        config = PluginConfigService()
        config.update_plugin_config("rules", stored)

        settings, warnings = config.resolve_settings("rules", {"threshold": 8, "verbose": False})

        assert settings == {"threshold": 8, "verbose": False}
        assert len(warnings) == 1
        assert expected_warning in warnings[0]
        assert expected_warning in caplog.text

    def test_undeclared_settings_pass_through(self):
        config = PluginConfigService()
        config.update_plugin_config("greeter", {"greeting": "hi"})

        assert config.resolve_settings("greeter", {}) == ({"greeting": "hi"}, [])
