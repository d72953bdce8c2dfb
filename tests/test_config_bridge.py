"""Tests for the configuration bridge."""

import json
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest
import yaml

from converge.constants import MODULE_DEFINITIONS_DIR
from converge.errors import ConfigValidationError
from converge.services.config_bridge import ConfigurationBridge


PACKAGES = {
    "categories": {
        "Development": [
            {"id": "Git.Git", "name": "Git"},
            {"id": "Microsoft.VisualStudioCode", "name": "VS Code"},
        ],
        "Productivity": [{"id": "Microsoft.PowerToys"}],
    }
}


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def write_yaml(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f)


@pytest.fixture
def roots(tmp_path):
    module_root = tmp_path / "module"
    user_root = tmp_path / "user"
    write_yaml(module_root / "Packages.yaml", PACKAGES)
    user_root.mkdir()
    return module_root, user_root


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bridge(roots, clock):
    module_root, user_root = roots
    return ConfigurationBridge(module_root, user_root, cache_ttl=60, clock=clock)


class TestResolve:
    """Tests for topic resolution and layering."""

    def test_packages_by_category(self, bridge):
        packages = bridge.resolve("Packages", "Development")

        assert [p["id"] for p in packages] == ["Git.Git", "Microsoft.VisualStudioCode"]

    def test_unknown_category_is_empty(self, bridge):
        assert bridge.resolve("Packages", "Gaming") == []

    def test_user_override_is_deep_merged(self, bridge, roots):
        _, user_root = roots
        write_yaml(user_root / "Packages.yaml", {
            "categories": {
                "Development": [
                    {"id": "Git.Git", "name": "Git for Windows"},
                    {"id": "Python.Python.3.12"},
                ]
            }
        })

        packages = bridge.resolve("Packages", "Development")

        assert [p["id"] for p in packages] == [
            "Git.Git", "Microsoft.VisualStudioCode", "Python.Python.3.12"
        ]
        assert packages[0]["name"] == "Git for Windows"

    def test_json_user_override(self, bridge, roots):
        _, user_root = roots
        with open(user_root / "Packages.json", "w", encoding="utf-8") as f:
            json.dump({"categories": {"Productivity": [{"id": "7zip.7zip"}]}}, f)

        packages = bridge.resolve("Packages", "Productivity")

        assert [p["id"] for p in packages] == ["Microsoft.PowerToys", "7zip.7zip"]

    def test_malformed_user_source_is_ignored(self, bridge, roots, caplog):
        _, user_root = roots
        (user_root / "Packages.yaml").write_text("categories: [unclosed", encoding="utf-8")

        packages = bridge.resolve("Packages", "Development")

        assert len(packages) == 2
        assert "Ignoring unreadable user-level source" in caplog.text

    def test_undecodable_user_source_is_ignored(self, bridge, roots, caplog):
        _, user_root = roots
        (user_root / "Packages.yaml").write_bytes(b"categories: \xff\xfe")

        packages = bridge.resolve("Packages", "Development")

        assert [p["id"] for p in packages] == ["Git.Git", "Microsoft.VisualStudioCode"]
        assert "Ignoring unreadable user-level source" in caplog.text

    @pytest.mark.parametrize("content", ["just some text\n", "- a\n- b\n", "42\n"])
    def test_wrongly_shaped_user_source_keeps_base(self, bridge, roots, caplog, content):
        """A user source that is not a mapping cannot replace the Packages document."""
        _, user_root = roots
        (user_root / "Packages.yaml").write_text(content, encoding="utf-8")

        packages = bridge.resolve("Packages", "Development")

        assert len(packages) == 2
        assert "expected dict" in caplog.text

    def test_mismatched_layers_on_custom_topic(self, bridge, roots, caplog):
        module_root, user_root = roots
        write_yaml(module_root / "Fonts.yaml", {"face": "Consolas"})
        write_yaml(user_root / "Fonts.yaml", ["Cascadia Code"])

        assert bridge.resolve("Fonts") == {"face": "Consolas"}
        assert "expected dict, got list" in caplog.text

    def test_scalar_module_source_is_empty(self, bridge, roots):
        module_root, _ = roots
        (module_root / "Fonts.yaml").write_text("plain\n", encoding="utf-8")

        assert bridge.resolve("Fonts") == {}

    def test_missing_topic_resolves_to_empty(self, bridge):
        assert bridge.resolve("Nothing") == {}

    def test_unregistered_topic_returns_merged_document(self, bridge, roots):
        module_root, user_root = roots
        write_yaml(module_root / "Fonts.yaml", {"face": "Consolas", "size": 10})
        write_yaml(user_root / "Fonts.yaml", {"size": 12})

        assert bridge.resolve("Fonts") == {"face": "Consolas", "size": 12}

    def test_register_topic_selector(self, bridge, roots):
        module_root, _ = roots
        write_yaml(module_root / "Fonts.yaml", {"faces": {"mono": "Cascadia Code"}})
        bridge.register_topic("Fonts", lambda doc, kind: doc["faces"].get(kind))

        assert bridge.resolve("Fonts", "mono") == "Cascadia Code"

    def test_bad_selector_parameters_raise_validation_error(self, bridge):
        with pytest.raises(ConfigValidationError):
            bridge.resolve("Packages", "Development", "extra")

    def test_empty_topic_rejected(self, bridge):
        with pytest.raises(ConfigValidationError):
            bridge.resolve("  ")


class TestCache:
    """Tests for the bridge cache."""

    def test_repeated_resolve_returns_identical_object(self, bridge):
        """Two calls within the TTL return the same cached object without re-reading sources."""
        first = bridge.resolve("Packages", "Development")

        with patch.object(bridge, "_load_source", wraps=bridge._load_source) as load:
            second = bridge.resolve("Packages", "Development")

        assert second is first
        load.assert_not_called()

    def test_clear_cache_forces_reread(self, bridge):
        first = bridge.resolve("Packages", "Development")
        bridge.clear_cache()

        with patch.object(bridge, "_load_source", wraps=bridge._load_source) as load:
            second = bridge.resolve("Packages", "Development")

        assert second is not first
        assert second == first
        assert load.called

    def test_disabled_cache_rereads_every_call(self, bridge):
        bridge.resolve("Packages", "Development")
        bridge.set_caching(False)

        assert bridge.get_cache_statistics()["entries"] == 0
        with patch.object(bridge, "_load_source", wraps=bridge._load_source) as load:
            first = bridge.resolve("Packages", "Development")
            second = bridge.resolve("Packages", "Development")

        assert first is not second
        assert load.call_count >= 2

    def test_entry_expires_after_ttl(self, bridge, clock):
        first = bridge.resolve("Packages", "Development")
        clock.now += 61

        assert bridge.resolve("Packages", "Development") is not first

    def test_entry_fresh_within_ttl(self, bridge, clock):
        first = bridge.resolve("Packages", "Development")
        clock.now += 59

        assert bridge.resolve("Packages", "Development") is first

    def test_cache_key_includes_parameters(self, bridge):
        bridge.resolve("Packages", "Development")
        bridge.resolve("Packages", "Productivity")

        stats = bridge.get_cache_statistics()
        assert stats["keys"] == ["Packages_Development", "Packages_Productivity"]
        assert stats["entries"] == 2
        assert stats["enabled"] is True
        assert stats["ttl_seconds"] == 60
        assert stats["last_updated"] is not None

    def test_invalidate_topic(self, bridge, roots):
        module_root, _ = roots
        write_yaml(module_root / "Other.yaml", {"x": 1})
        bridge.resolve("Packages", "Development")
        bridge.resolve("Other")

        assert bridge.invalidate("Packages") == 1
        assert bridge.get_cache_statistics()["keys"] == ["Other"]

    def test_parameters_with_underscores_do_not_collide(self, bridge):
        bridge.register_topic("Echo", lambda doc, *params: list(params))

        joined = bridge.resolve("Echo", "Dark_True")
        split = bridge.resolve("Echo", "Dark", True)

        assert joined == ["Dark_True"]
        assert split == ["Dark", True]
        assert bridge.get_cache_statistics()["entries"] == 2

    def test_parameter_types_are_part_of_the_key(self, bridge):
        bridge.register_topic("Echo", lambda doc, *params: list(params))

        assert bridge.resolve("Echo", 1) == [1]
        assert bridge.resolve("Echo", "1") == ["1"]

    def test_invalidate_does_not_touch_prefixed_topics(self, bridge, roots):
        module_root, _ = roots
        write_yaml(module_root / "Packages_Extra.yaml", {"x": 1})
        bridge.resolve("Packages", "Development")
        bridge.resolve("Packages_Extra")

        assert bridge.invalidate("Packages") == 1
        assert bridge.get_cache_statistics()["keys"] == ["Packages_Extra"]

    def test_save_user_override_invalidates(self, bridge, roots):
        _, user_root = roots
        bridge.resolve("Packages", "Development")

        path = bridge.save_user_override(
            "Packages", {"categories": {"Development": [{"id": "Git.Git", "name": "Git (pinned)"}]}}
        )

        assert path == user_root / "Packages.yaml"
        assert bridge.user_source_path("Packages") == path
        assert bridge.resolve("Packages", "Development")[0]["name"] == "Git (pinned)"

    def test_negative_ttl_rejected(self, roots):
        module_root, _ = roots
        with pytest.raises(ConfigValidationError):
            ConfigurationBridge(module_root, cache_ttl=-1)


class TestBuiltinDefinitions:
    """Tests against the definitions shipped with the package."""

    @pytest.fixture
    def builtin(self, tmp_path):
        return ConfigurationBridge(MODULE_DEFINITIONS_DIR, tmp_path / "user")

    def test_builtin_packages(self, builtin):
        ids = [p["id"] for p in builtin.get_packages("Development")]
        assert "Git.Git" in ids

    def test_terminal_settings_sections(self, builtin):
        terminal = builtin.get_terminal_settings(theme="Light", include_keybindings=True, include_fonts=False)

        assert terminal["theme"]["name"] == "One Half Light"
        assert "keybindings" in terminal
        assert "fonts" not in terminal
        assert "profiles" in terminal

    def test_profile_merges_common_and_shell(self, builtin):
        profile = builtin.get_profile_settings("PowerShell")

        assert profile["history_size"] == 4096
        assert profile["prompt"] == "oh-my-posh"
        assert [a["id"] for a in profile["aliases"]] == ["ll", "g", "which"]

    def test_profile_without_aliases(self, builtin):
        profile = builtin.get_profile_settings("Bash", include_aliases=False)

        assert "aliases" not in profile
        assert profile["shell"] == "Bash"


class TestConcurrency:
    """Tests for the cache under concurrent access."""

    def test_concurrent_resolve_and_clear(self, roots):
        module_root, user_root = roots
        bridge = ConfigurationBridge(module_root, user_root, cache_ttl=60)
        categories = ["Development", "Productivity", "Gaming"]

        def work(index):
            if index % 10 == 0:
                bridge.clear_cache()
                return None
            return bridge.resolve("Packages", categories[index % 3])

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(work, range(300)))

        for index, value in enumerate(results):
            if index % 10:
                assert value == bridge.resolve("Packages", categories[index % 3])
        stats = bridge.get_cache_statistics()
        assert stats["entries"] == len(stats["keys"])
        assert set(stats["keys"]) <= {"Packages_Development", "Packages_Productivity", "Packages_Gaming"}

    def test_concurrent_hits_share_one_object(self, bridge):
        with ThreadPoolExecutor(max_workers=8) as pool:
            values = list(pool.map(lambda _: bridge.resolve("Packages", "Development"), range(50)))

        assert all(value is values[0] for value in values)
        assert bridge.get_cache_statistics()["keys"] == ["Packages_Development"]
